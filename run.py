"""Local development entry point.

Usage:
    python run.py

Reads .env (see lovewheel/config.py for the variables) and serves the API
on port 5000 with the dev config unless FLASK_ENV says otherwise.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from lovewheel import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5000)
