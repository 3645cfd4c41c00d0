"""
Feature Service CLI

Lists the layers of an ArcGIS REST service and downloads features as JSON
lines.

Usage:
    python main.py URL --layers
    python main.py URL --download "Incidents" --where "status = 1" --keep-querying --parallel 4
"""

import sys
import json
import time
import argparse
from typing import Optional, TextIO
from loguru import logger
from dotenv import load_dotenv

from featureservice import DynamicFeature, FeatureServiceError, Service
from featureservice.config import settings
from featureservice.logging_utils import log_summary, setup_logging


class FeatureServiceCLI:
    """Command line front end for one service url"""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        gdb_version: Optional[str] = None,
    ):
        # Pick up settings from a local .env
        load_dotenv()

        setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

        self.service = Service(
            url,
            token=token,
            gdb_version=gdb_version,
            username=username,
            password=password,
        )

        logger.info(f"Connected to {url}: {len(self.service.layers)} layers and tables")

    def show_layers(self, out: TextIO = sys.stdout):
        """Print layers, fields and domains of the service"""
        print("\n" + "=" * 60, file=out)
        print(f"  {self.service.url}", file=out)
        print("=" * 60, file=out)

        for layer in self.service.layers:
            kind = layer.geometry_type or "table"
            print(f"\n[{layer.id}] {layer.name} ({kind}{', Z' if layer.has_z else ''})", file=out)
            for field in layer.fields:
                domain = f"  domain={field.domain.name}" if field.domain else ""
                print(f"   - {field.name:<30} {field.type}{domain}", file=out)

        if self.service.domains:
            print("\nDomains:", file=out)
            for domain in self.service.domains:
                values = ", ".join(f"{c.code}={c.name}" for c in domain.coded_values)
                print(f"   - {domain.name}: {values}", file=out)

        print("\n" + "=" * 60, file=out)

    def download(
        self,
        layer: str,
        where: Optional[str] = None,
        keep_querying: bool = False,
        parallel: int = 1,
        out: TextIO = sys.stdout,
    ) -> int:
        """Write the matching features of ``layer`` as JSON lines"""
        layer_ref = int(layer) if layer.isdigit() else layer
        start = time.time()
        count = 0

        for feature in self.service.download(
            layer_ref,
            DynamicFeature,
            where=where,
            keep_querying=keep_querying,
            degree_of_parallelism=parallel,
        ):
            record = {
                "objectId": feature.object_id,
                "attributes": {name: feature[name] for name in feature.field_names()},
                "geometry": feature.geometry.to_dict() if feature.geometry is not None else None,
            }
            out.write(json.dumps(record, default=str, ensure_ascii=False) + "\n")
            count += 1

        log_summary(
            "Download",
            layer=layer,
            where=where or "1=1",
            features=count,
            duration=f"{time.time() - start:.2f}s",
        )
        return count


def main():
    """Entry point"""
    parser = argparse.ArgumentParser(description='ArcGIS REST feature service client')
    parser.add_argument('url', help='Service url ending with MapServer or FeatureServer')
    parser.add_argument('--layers', action='store_true', help='List layers, fields and domains')
    parser.add_argument('--download', metavar='LAYER', help='Download features of a layer (id or name)')
    parser.add_argument('--where', help='Where clause')
    parser.add_argument('--keep-querying', action='store_true', help='Fetch past the server page size')
    parser.add_argument('--parallel', type=int, default=settings.DEGREE_OF_PARALLELISM, help='Concurrent batch fetches')
    parser.add_argument('--output', help='Write JSON lines to this file instead of stdout')
    parser.add_argument('--token', help='Token')
    parser.add_argument('--username', help='Generate tokens for this user')
    parser.add_argument('--password', help='Password for --username')
    parser.add_argument('--gdb-version', help='Geodatabase version')

    args = parser.parse_args()

    if args.username and args.password is None:
        parser.error('--password is required with --username')

    try:
        cli = FeatureServiceCLI(
            args.url,
            token=args.token,
            username=args.username,
            password=args.password,
            gdb_version=args.gdb_version,
        )

        if args.layers:
            cli.show_layers()
        elif args.download:
            if args.output:
                with open(args.output, 'w', encoding='utf-8') as out:
                    cli.download(args.download, args.where, args.keep_querying, args.parallel, out)
            else:
                cli.download(args.download, args.where, args.keep_querying, args.parallel)
        else:
            parser.print_help()

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except FeatureServiceError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
