# main.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# This is the "start button" for the analytics engine. Running
# "python main.py" launches the web server the dashboard talks to.
#
# It does three things:
#   1. Loads API keys from the .env file
#   2. Warns (but keeps going) if no language model key is set — the
#      engine still builds the graph and memory tiers, it just uses
#      default topics and zero vectors instead of real analysis
#   3. Starts the FastAPI web server using uvicorn
#
# USAGE:
#   python main.py                  → Start on port 8000 (default)
#   python main.py --port 3000      → Start on a different port
#   python main.py --host 0.0.0.0   → Make accessible from other devices
#   python main.py --snapshot PATH  → Read/write the snapshot somewhere else
# ============================================================================

# ── IMPORTS ────────────────────────────────────────────────────────────
import os
import argparse

import uvicorn
from dotenv import load_dotenv


# ── LOAD ENVIRONMENT VARIABLES ─────────────────────────────────────────

# .env holds the API keys; it must be loaded before config/settings.py
# is imported anywhere (uvicorn imports web.app, which imports settings).
load_dotenv()

API_KEY_NAMES = ('OPENROUTER_API_KEY', 'OPENAI_API_KEY', 'ANTHROPIC_API_KEY')


def check_api_keys() -> bool:
    """Print a warning when no language model key is configured."""
    if any(os.environ.get(name) for name in API_KEY_NAMES):
        return True
    print("[WARN] No language model API key set.")
    print("   Topics, summaries and embeddings will use default values.")
    print("   Add OPENROUTER_API_KEY (or OPENAI_API_KEY) to your .env file to enable them.")
    return False


# ── MAIN FUNCTION ──────────────────────────────────────────────────────

def main():
    """Parse command-line arguments and start the web server."""
    parser = argparse.ArgumentParser(
        description="Email Relationship Analytics — relationship graph and context memory over your email"
    )
    parser.add_argument(
        '--port', type=int, default=8000,
        help="Port to run the web server on (default: 8000)"
    )
    parser.add_argument(
        '--host', type=str, default='127.0.0.1',
        help="Host to bind to. Use 0.0.0.0 for network access (default: 127.0.0.1)"
    )
    parser.add_argument(
        '--snapshot', type=str, default=None,
        help="Snapshot file to load on start and save on stop (default: data/snapshot.yaml)"
    )
    args = parser.parse_args()

    # Settings read SNAPSHOT_PATH from the environment at import time
    if args.snapshot:
        os.environ['SNAPSHOT_PATH'] = args.snapshot

    check_api_keys()

    # ── Print a startup banner ─────────────────────────────────
    print()
    print("  ===========================================")
    print("        Email Relationship Analytics        ")
    print("  ===========================================")
    print(f"   http://{args.host}:{args.port}              ")
    print("   Press Ctrl+C to stop                     ")
    print("  ===========================================")
    print()

    # "web.app:app" tells uvicorn: import the 'app' object from web/app.py
    uvicorn.run(
        "web.app:app",
        host=args.host,
        port=args.port,
        reload=False,
        log_level="info"
    )


if __name__ == "__main__":
    main()
