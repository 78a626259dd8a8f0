import os

from avocat import create_app

app = create_app()


# --- Main Execution ---
if __name__ == '__main__':
    # Use environment variable for port, default to 5000 for local dev
    port = int(os.environ.get('PORT', 5000))
    # Use debug=True only for local development, controlled by env var
    debug_mode = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    app.run(host='0.0.0.0', port=port, debug=debug_mode)
