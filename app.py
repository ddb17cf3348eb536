"""
Flask Web Application for the Curriculum Coach

JSON API over ConversationEngine. Each authoring session owns one engine,
held in an app-level registry.
"""

import asyncio
import logging
import threading
from pathlib import Path

from flask import Flask, current_app, jsonify, request

from coach.config import EngineConfig
from coach.contracts import SeedData
from coach.core.blueprint_formatter import BlueprintFormatter
from coach.core.conversation_engine import ConversationEngine
from coach.core.suggestion_provider import build_suggestion_provider
from coach.persistence import SessionPersistence
from coach.results import trace_to_json
from coach.utils.helpers import generate_session_filename, generate_session_id

logger = logging.getLogger(__name__)

# Rejection kind -> HTTP status
_ERROR_STATUS = {
    'validation_error': 400,
    'unknown_action': 400,
    'illegal_action': 409,
    'busy': 409,
    'provider_failure': 502,
}


class SessionRegistry:
    """Thread-safe session_id -> ConversationEngine map"""

    def __init__(self):
        self._engines = {}
        self._lock = threading.Lock()

    def add(self, engine):
        with self._lock:
            self._engines[engine.session_id] = engine

    def get(self, session_id):
        with self._lock:
            return self._engines.get(session_id)

    def __len__(self):
        with self._lock:
            return len(self._engines)


def _load_model(config):
    """Initialize HuggingFace model once at startup (None when not configured)"""
    if not config.model_name:
        logger.info("No model configured; using static suggestions only")
        return None

    from coach.utils.hf_client import HuggingFaceClient

    logger.info("Initializing HuggingFace model (this takes ~30 seconds)...")
    hf_client = HuggingFaceClient(
        model_name=config.model_name,
        load_in_4bit=config.load_in_4bit,
        device=config.device
    )
    logger.info("Model loaded successfully")
    return hf_client


def _session_payload(engine):
    return {
        'session_id': engine.session_id,
        'message': engine.current_message(),
        'state': engine.get_state().to_json(),
        'quick_replies': [reply.to_json() for reply in engine.get_quick_reply_buttons()]
    }


def _session_not_found(session_id):
    return jsonify({
        'success': False,
        'error': f'Session not found: {session_id}'
    }), 404


def create_app(config=None, hf_client=None):
    """
    Build the Flask app.

    Args:
        config: EngineConfig (default: EngineConfig.from_env())
        hf_client: Preloaded HuggingFaceClient; loaded from config.model_name
            when omitted

    Returns:
        Flask
    """
    config = config or EngineConfig.from_env()

    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.secret_key
    app.config['COACH_CONFIG'] = config
    app.extensions['coach_sessions'] = SessionRegistry()
    app.extensions['coach_hf_client'] = hf_client if hf_client is not None else _load_model(config)

    def sessions():
        return current_app.extensions['coach_sessions']

    @app.route('/api/sessions', methods=['POST'])
    def create_session():
        """Start a new session (or resume a persisted one)"""
        try:
            data = request.get_json(silent=True) or {}
            seed = SeedData.from_json(data.get('seed', {}))
            resume_id = data.get('resume_session_id')
            session_id = resume_id or generate_session_id()

            persistence = SessionPersistence(session_id, config.persistence_dir)
            if resume_id and not persistence.session_exists():
                return _session_not_found(resume_id)

            provider = build_suggestion_provider(
                seed,
                current_app.extensions['coach_hf_client'],
                temperature=config.suggestion_temperature
            )

            if resume_id:
                engine = ConversationEngine.resume(
                    persistence, seed=seed, config=config, suggestion_provider=provider
                )
            else:
                engine = ConversationEngine(
                    seed=seed,
                    suggestion_provider=provider,
                    persistence=persistence,
                    config=config,
                    session_id=session_id
                )

            sessions().add(engine)
            logger.info(f"Session created: {engine.session_id} ({len(sessions())} active)")

            return jsonify({'success': True, **_session_payload(engine)})

        except Exception as e:
            logger.error(f"Error creating session: {e}")
            return jsonify({
                'success': False,
                'error': str(e)
            }), 500

    @app.route('/api/sessions/<session_id>/actions', methods=['POST'])
    def submit_action(session_id):
        """Apply one action to a session"""
        engine = sessions().get(session_id)
        if engine is None:
            return _session_not_found(session_id)

        data = request.get_json(silent=True) or {}
        action = data.get('action')
        if not action:
            return jsonify({
                'success': False,
                'error': 'Missing action'
            }), 400

        try:
            result = asyncio.run(engine.process(action, data.get('payload')))
        except Exception as e:
            logger.error(f"Error processing action for {session_id}: {e}")
            return jsonify({
                'success': False,
                'error': str(e)
            }), 500

        body = {
            'success': result.accepted,
            'error': result.error,
            'result': result.to_json(),
            'quick_replies': [reply.to_json() for reply in engine.get_quick_reply_buttons()]
        }
        status = 200 if result.accepted else _ERROR_STATUS.get(result.error, 400)
        return jsonify(body), status

    @app.route('/api/sessions/<session_id>/state', methods=['GET'])
    def get_state(session_id):
        engine = sessions().get(session_id)
        if engine is None:
            return _session_not_found(session_id)
        return jsonify({'success': True, **_session_payload(engine)})

    @app.route('/api/sessions/<session_id>/trace', methods=['GET'])
    def get_trace(session_id):
        engine = sessions().get(session_id)
        if engine is None:
            return _session_not_found(session_id)
        return jsonify({'success': True, 'trace': trace_to_json(list(engine.trace))})

    @app.route('/api/sessions/<session_id>/blueprint', methods=['GET'])
    def get_blueprint(session_id):
        """Blueprint JSON; ?save=1 also writes it under the persistence dir"""
        engine = sessions().get(session_id)
        if engine is None:
            return _session_not_found(session_id)

        try:
            formatter = BlueprintFormatter(catalog=engine.catalog)
            blueprint = formatter.format(engine.get_state(), engine.session_id, engine.seed)

            saved_path = None
            if request.args.get('save') in ('1', 'true'):
                path = Path(config.persistence_dir) / f"SESSION-{session_id}" / generate_session_filename()
                saved_path = formatter.save_to_file(blueprint, str(path))

            return jsonify({'success': True, 'blueprint': blueprint, 'saved_path': saved_path})

        except Exception as e:
            logger.error(f"Error exporting blueprint for {session_id}: {e}")
            return jsonify({
                'success': False,
                'error': str(e)
            }), 500

    return app


if __name__ == '__main__':
    config = EngineConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    create_app(config).run(debug=False, host='0.0.0.0', port=5000)
