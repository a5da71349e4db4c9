import os
import sys
import logging
from typing import Dict, List, Optional
from dotenv import load_dotenv
from adc_auth import AuthenticationError
from adc_client import ADCClient
from excel_tables import read_table_rows
from payloads import (
    DEFAULT_ASSET_TEMPLATE,
    DEFAULT_CONTAINER_TEMPLATE,
    asset_payload,
    container_payload,
    description_payload,
    load_template,
)
from transient_errors import CatalogRequestError

DEFAULT_UPN = "user1@contoso.com"
DEFAULT_SHEET_NAME = "AdventureWorks2014"
DEFAULT_TABLE_NAME = "Table1"


def register_container(client: ADCClient, template: str, upn: str) -> str:
    """Register the data source container; returns its id (Location header)"""
    return client.register_data_asset(container_payload(template, upn), "containers")


def register_data_assets(client: ADCClient, container_id: str, rows: List[Dict[str, str]],
                         asset_template: str, upn: str) -> List[Dict]:
    """
    Register each table row as a data asset and annotate it with its description.

    Rows are processed in order. A failure on one row is reported and recorded,
    and processing continues with the next row.
    """
    results = []

    for row_num, row in enumerate(rows, 1):
        name = row.get('Table', '')
        description = row.get('Description', '')
        result = {'table': name, 'asset_id': None, 'success': False, 'error': ''}

        print(f"\nProcessing row {row_num}: {name}")

        try:
            asset_id = client.register_data_asset(
                asset_payload(asset_template, container_id, name, upn), "tables")
        except CatalogRequestError as e:
            print(f"  ✗ Registration failed for {name}: {e}")
            result['error'] = f"FAILED: Registration - {e}"
            results.append(result)
            continue

        result['asset_id'] = asset_id
        print(f"  ✓ Data Asset Registered: {name} - {asset_id}")

        try:
            client.annotate_data_asset(asset_id, "descriptions", description_payload(description))
        except CatalogRequestError as e:
            print(f"  ✗ Description annotation failed for {asset_id}: {e}")
            result['error'] = f"FAILED: Annotation - {e}"
            results.append(result)
            continue

        print(f"  ✓ Data Asset Description Annotated: {asset_id}")
        result['success'] = True
        results.append(result)

    return results


def print_summary(results: List[Dict]):
    """Print registration summary statistics"""
    total_rows = len(results)
    successful = sum(1 for r in results if r['success'])
    registration_failures = sum(1 for r in results if r['error'].startswith("FAILED: Registration"))
    annotation_failures = sum(1 for r in results if r['error'].startswith("FAILED: Annotation"))

    print(f"\nSUMMARY:")
    print(f"Total rows processed: {total_rows}")
    print(f"✓ Registered and annotated: {successful}")
    print(f"✗ Registration failures: {registration_failures}")
    print(f"✗ Annotation failures: {annotation_failures}")


def main(workbook_path: Optional[str] = None, config_file=None) -> int:
    """Main execution function; returns the process exit status"""
    load_dotenv(config_file or '.env', override=True)
    logging.basicConfig(
        level=os.environ.get('LOG_LEVEL', 'WARNING').upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    workbook_path = workbook_path or os.environ.get('ADC_WORKBOOK_PATH')
    if not workbook_path:
        print("ERROR: ADC_WORKBOOK_PATH environment variable (or a workbook argument) is required")
        return 1

    sheet_name = os.environ.get('ADC_SHEET_NAME', DEFAULT_SHEET_NAME)
    table_name = os.environ.get('ADC_TABLE_NAME', DEFAULT_TABLE_NAME)
    upn = os.environ.get('ADC_UPN', DEFAULT_UPN)

    print(f"Workbook: {workbook_path}")
    print(f"Sheet / Table: {sheet_name} / {table_name}")

    try:
        container_template = load_template(os.environ.get('ADC_CONTAINER_TEMPLATE', DEFAULT_CONTAINER_TEMPLATE))
        asset_template = load_template(os.environ.get('ADC_ASSET_TEMPLATE', DEFAULT_ASSET_TEMPLATE))
        rows = read_table_rows(workbook_path, sheet_name, table_name)
    except (OSError, ValueError) as e:
        print(f"ERROR reading input: {e}")
        return 1

    print(f"Read {len(rows)} rows from {table_name}")

    try:
        client = ADCClient(config_file)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    with client:
        print("\n" + "="*60)
        print("REGISTERING DATA SOURCE CONTAINER")
        print("="*60)

        try:
            container_id = register_container(client, container_template, upn)
        except (CatalogRequestError, AuthenticationError) as e:
            print(f"✗ Container registration failed: {e}")
            return 1

        print(f"✓ Container Registered: {container_id}")

        print("\n" + "="*60)
        print("REGISTERING DATA ASSETS")
        print("="*60)

        try:
            results = register_data_assets(client, container_id, rows, asset_template, upn)
        except AuthenticationError as e:
            print(f"✗ Sign-in failed, stopping: {e}")
            return 1

    print_summary(results)

    print("\n" + "="*60)
    print("PROCESS COMPLETED")
    print("="*60)

    return 0 if all(r['success'] for r in results) else 2


def cli():
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else None))


if __name__ == "__main__":
    # Workbook may be given as the first argument; everything else comes from .env:
    # ADC_CLIENT_ID=...            (or ADC_ACCESS_TOKEN=... to skip interactive sign-in)
    # ADC_CATALOG_NAME=DefaultCatalog
    # ADC_WORKBOOK_PATH=Ad Hoc Data Catalog.xlsx
    # ADC_SHEET_NAME=AdventureWorks2014
    # ADC_TABLE_NAME=Table1
    cli()
