import os
import sys
import threading
import time
import webbrowser
from application import create_app

def open_browser(port):
    """Open browser after a short delay to ensure server is running"""
    time.sleep(2)
    webbrowser.open(f'http://127.0.0.1:{port}/api/schedule')

def main():
    app = create_app(config_name=os.environ.get('FLASK_CONFIG', 'production'))
    port = int(os.environ.get('PORT', 5000))

    if os.environ.get('OPEN_BROWSER', '1') == '1':
        browser_thread = threading.Thread(target=open_browser, args=(port,))
        browser_thread.daemon = True
        browser_thread.start()

    # Run the Flask app
    try:
        app.run(host='127.0.0.1', port=port, debug=False, use_reloader=False)
    except KeyboardInterrupt:
        app.logger.info("Application stopped.")
        sys.exit(0)

if __name__ == '__main__':
    main()
