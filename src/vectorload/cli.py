#!/usr/bin/env python3
"""vectorload command line

Runs a load test against a vector store:
- creates the collection and inserts a known dataset
- builds the index and loads the collection
- runs virtual users that insert and search with recall scoring
- prints the metric summary and optionally exports it
"""
import argparse
import json
import logging
import sys

from .config import HarnessConfig
from .exceptions import VectorLoadError
from .index import IndexType, MetricType
from .metrics import HttpExporter, JsonFileExporter, MetricsSink
from .runner import LoadRunner

logger = logging.getLogger("vectorload")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vectorload",
        description="Load test a vector store with recall measurement",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
  # 8 virtual users for two minutes
  %(prog)s --uri grpc://localhost:19530 --vus 8 --duration 120

  # IVF index, cosine metric, export metrics
  %(prog)s --index-type IVF_FLAT --metric-type COSINE --json metrics.json
""",
    )
    # Connection
    parser.add_argument("--uri", help="Store Flight URI (env VECTORLOAD_URI)")
    parser.add_argument("--api-key", help="API key")
    parser.add_argument("--timeout", type=float, help="Per-call timeout in seconds")

    # Workload
    parser.add_argument("--collection", help="Collection name")
    parser.add_argument("--dim", type=int, help="Vector dimension")
    parser.add_argument("--rows", type=int, help="Rows inserted during setup")
    parser.add_argument("--batch-size", type=int, help="Rows per insert call")
    parser.add_argument("--top-k", type=int, help="Top-k per search")
    parser.add_argument("--queries", type=int, dest="ground_truth_queries",
                        help="Number of query vectors with ground truth")
    parser.add_argument("--index-type", choices=[t.value for t in IndexType], help="Index type")
    parser.add_argument("--metric-type", choices=[m.value for m in MetricType], help="Distance metric")
    parser.add_argument("--keep-existing", action="store_true", help="Do not drop an existing collection")

    # Virtual users
    parser.add_argument("--vus", type=int, help="Parallel virtual users")
    parser.add_argument("--duration", type=float, help="Run duration in seconds")
    parser.add_argument("--insert-ratio", type=float, help="Fraction of iterations that insert")

    # Output
    parser.add_argument("--json", dest="metrics_json", help="Export metric summary to JSON file")
    parser.add_argument("--push-url", dest="metrics_url", help="POST metric summary to this URL")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--no-teardown", action="store_true", help="Leave the collection loaded")
    return parser


def config_from_args(args: argparse.Namespace) -> HarnessConfig:
    overrides = {
        "uri": args.uri,
        "api_key": args.api_key,
        "call_timeout": args.timeout,
        "collection": args.collection,
        "dim": args.dim,
        "rows": args.rows,
        "batch_size": args.batch_size,
        "top_k": args.top_k,
        "ground_truth_queries": args.ground_truth_queries,
        "index_type": args.index_type,
        "metric_type": args.metric_type,
        "vus": args.vus,
        "duration": args.duration,
        "insert_ratio": args.insert_ratio,
        "metrics_json": args.metrics_json,
        "metrics_url": args.metrics_url,
        "log_level": args.log_level,
    }
    if args.keep_existing:
        overrides["drop_existing"] = False
    return HarnessConfig.from_env(**overrides)


def print_report(summary) -> None:
    print("\n" + "=" * 72)
    print("VECTORLOAD SUMMARY")
    print("=" * 72)
    for series in summary:
        tags = ",".join(f"{k}={v}" for k, v in sorted(series["tags"].items()))
        values = {k: v for k, v in series.items() if k not in ("metric", "kind", "tags")}
        print(f"{series['metric']}{{{tags}}} {json.dumps(values)}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = config_from_args(args)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    exporters = []
    if config.metrics_json:
        exporters.append(JsonFileExporter(config.metrics_json))
    if config.metrics_url:
        exporters.append(HttpExporter(config.metrics_url))

    metrics = MetricsSink(base_tags=config.tags, exporters=exporters)
    runner = LoadRunner(config, metrics)
    try:
        runner.setup()
        runner.run()
        if not args.no_teardown:
            runner.teardown()
    except VectorLoadError as e:
        logger.error(f"Run aborted: {e}")
        return 1
    finally:
        print_report(metrics.summary())
        metrics.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
