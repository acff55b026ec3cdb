import argparse
import logging
import sys
from pathlib import Path

# Ensure repo root is on sys.path so "services.*" imports work when running scripts directly.
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import config  # noqa: E402
from auth.token_manager import TokenManager  # noqa: E402
from services.sync_context import open_sync_context  # noqa: E402

LOGGER = logging.getLogger("seed_oauth_token")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Insert an LWA refresh token into oauth_tokens so scheduled syncs can authenticate."
    )
    parser.add_argument(
        "--refresh-token",
        default=config.LWA_REFRESH_TOKEN,
        help="Refresh token to store (default: LWA_REFRESH_TOKEN from the environment)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database path (default: VENDOR_SYNC_DB_PATH)",
    )
    parser.add_argument(
        "--refresh-now",
        action="store_true",
        help="Exchange the refresh token for an access token right away.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    if not args.refresh_token:
        LOGGER.error("No refresh token given; pass --refresh-token or set LWA_REFRESH_TOKEN")
        return 2

    with open_sync_context(args.db) as ctx:
        manager = TokenManager(ctx)
        row_id = manager.store_token(args.refresh_token)
        print(f"Stored refresh token as oauth_tokens row {row_id}")
        if args.refresh_now:
            manager.refresh(args.refresh_token)
            print("Access token refreshed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
