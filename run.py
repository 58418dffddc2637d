"""Local development entry point.

Usage:
    python run.py

Mint a token for local calls with `flask issue-token --uid dev-user`.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from puzzlepass import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
