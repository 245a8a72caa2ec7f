# services/event_summarizer/src/main.py

import os
from flask import Flask, request, jsonify
from flask_cors import CORS

from services.event_summarizer.src.config import load_config, setup_logging
from services.event_summarizer.src.event_summarizer import generate_event_summary, unhandled_outcome

setup_logging()

# Prebuilt frontend assets, resolved against the working directory
STATIC_BUILD_DIR = os.path.abspath(os.getenv('STATIC_BUILD_DIR', 'build'))

app = Flask(__name__, static_folder=STATIC_BUILD_DIR, static_url_path='')
CORS(app)


@app.route('/api/generate-summary', methods=['POST'])
def generate_summary():
    """ Fetch one event from the backend and return a Gemini-written summary of it. """
    # an injected SummarizerConfig wins over the process environment
    config = app.config.get('SUMMARIZER_CONFIG') or load_config()

    try:
        body = request.get_json(silent=True)
        event_id = body.get('eventID') if isinstance(body, dict) else None
        outcome = generate_event_summary(event_id, config)
    except Exception as e:
        app.logger.exception(f"Error generating summary: {e}")
        outcome = unhandled_outcome(e, include_stack=config.is_development)

    return jsonify(outcome.payload), outcome.status


@app.route('/', methods=['GET'])
def index():
    return app.send_static_file('index.html')


if __name__ == '__main__':
    PORT = int(os.getenv("PORT", 8080))
    app.run(host='0.0.0.0', port=PORT, debug=False)
