import sys
import argparse
from pathlib import Path
from dotenv import load_dotenv
import uvicorn

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

# Environment must be loaded before powerwatt.config is imported
load_dotenv()


def main():
    """Run the PowerWatt usage API."""
    parser = argparse.ArgumentParser(
        description="PowerWatt per-application power usage tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default (127.0.0.1:8765)
  python run.py

  # Different port, faster sampling
  SAMPLING_INTERVAL_SECONDS=2 python run.py --port 9000

URLs:
  - API docs: http://localhost:8765/docs
  - Current usage: http://localhost:8765/api/v1/usage/current
  - Health: http://localhost:8765/api/v1/system/health
  - Metrics: http://localhost:8765/api/v1/system/metrics
        """
    )

    from powerwatt.config import settings

    parser.add_argument(
        "--host",
        default=settings.API_HOST,
        help=f"Bind host (default: {settings.API_HOST})"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=settings.API_PORT,
        help=f"Bind port (default: {settings.API_PORT})"
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        default=False,
        help="Restart on code changes (development only)"
    )

    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL.lower(),
        help=f"Uvicorn log level (default: {settings.LOG_LEVEL.lower()})"
    )

    args = parser.parse_args()

    print(f"\n{'='*60}")
    print("PowerWatt Usage API")
    print(f"{'='*60}")
    print(f"Server: http://{args.host}:{args.port}")
    print(f"Database: {settings.database_file}")
    print(f"Sampling: every {settings.SAMPLING_INTERVAL_SECONDS}s, retention {settings.RETENTION_PERIOD.value}")
    print(f"Tracking: {'enabled' if settings.USAGE_TRACKING_ENABLED else 'disabled'}")
    print(f"{'='*60}\n")

    # Single worker: the sampling pipeline and SQLite store live in-process
    try:
        uvicorn.run(
            "powerwatt.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,
            log_level=args.log_level
        )
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"Server failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
