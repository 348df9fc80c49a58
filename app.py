import os
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any, Dict

from flask import Flask, request, jsonify
from flask_socketio import SocketIO, emit

from layerflow import config
from layerflow.code_generator import emit as emit_code, parse_style, select_style
from layerflow.debounce import Debouncer
from layerflow.designer import parse_graph_to_dag
from layerflow.layers import default_registry
from layerflow.pipeline import analyze, build_overlay, parse_graph_payload
from layerflow.shapes import infer_shapes
from layerflow.templates import get_template, list_templates

app = Flask(__name__)
socketio = SocketIO(app, cors_allowed_origins="*")

registry = default_registry()

# Recent log records for clients that connect late
log_history = deque(maxlen=config.LOG_HISTORY)


class SocketIOLogHandler(logging.Handler):
    def emit(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S'),
            'level': record.levelname,
            'message': self.format(record),
            'module': record.name
        }
        log_history.append(log_entry)
        socketio.emit('log', log_entry)


logger = logging.getLogger('layerflow.service')
logger.setLevel(logging.INFO)
handler = SocketIOLogHandler()
handler.setFormatter(logging.Formatter('%(message)s'))
logger.addHandler(handler)

console_handler = logging.StreamHandler()
console_handler.setFormatter(logging.Formatter('[%(asctime)s] %(levelname)s: %(message)s'))
logger.addHandler(console_handler)

# One debouncer per connected editor
debouncers: Dict[str, Debouncer] = {}
debouncers_lock = threading.Lock()


def _graph_from_request() -> Dict[str, Any]:
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data.get("graph", data)


def _error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


@app.route("/api/layers", methods=["GET"])
def layers():
    return jsonify({"layers": registry.describe()})


@app.route("/api/templates", methods=["GET"])
def templates():
    return jsonify({"templates": list_templates()})


@app.route("/api/templates/<template_id>", methods=["GET"])
def template(template_id):
    found = get_template(template_id)
    if found is None:
        return _error(f"Template '{template_id}' not found", 404)
    return jsonify(found)


@app.route("/api/validate", methods=["POST"])
def validate():
    try:
        nodes, edges = parse_graph_payload(_graph_from_request())
        dag = parse_graph_to_dag(nodes, edges)
        return jsonify({"ok": True, "isValid": dag.is_valid, "errors": dag.errors})
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.exception("Validation failed")
        return _error(f"Internal Error: {str(e)}", 500)


@app.route("/api/shapes", methods=["POST"])
def shapes():
    try:
        data = request.get_json(force=True, silent=True) or {}
        nodes, edges = parse_graph_payload(_graph_from_request())
        dag = parse_graph_to_dag(nodes, edges)
        report = infer_shapes(dag, data.get("inputShape"), registry)
        return jsonify({
            "ok": True,
            "isValid": dag.is_valid,
            "errors": [{"nodeId": e.node_id, "message": e.message, "kind": e.kind} for e in report.errors],
            "warnings": [{"nodeId": w.node_id, "message": w.message} for w in report.warnings],
            "nodeShapes": report.node_shapes,
            "overlay": build_overlay(nodes, report),
        })
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.exception("Shape inference failed")
        return _error(f"Internal Error: {str(e)}", 500)


@app.route("/api/generate_code", methods=["POST"])
def generate_code():
    try:
        data = request.get_json(force=True, silent=True) or {}
        nodes, edges = parse_graph_payload(_graph_from_request())
        style = parse_style(data.get("style"))
        dag = parse_graph_to_dag(nodes, edges)
        if not dag.is_valid:
            return jsonify({"ok": False, "error": "; ".join(dag.errors), "errors": dag.errors}), 400
        report = infer_shapes(dag, data.get("inputShape"), registry)
        code = emit_code(dag, style or select_style(dag, registry), registry, report.node_shapes)
        logger.info(f"Generated {code.style.label} code for {len(dag.ordered_nodes)} layers")
        return jsonify({"ok": True, "code": code.source, "style": code.style.label, "warnings": code.warnings})
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.exception("Code generation failed")
        return _error(f"Internal Error: {str(e)}", 500)


@app.route("/api/analyze", methods=["POST"])
def analyze_graph():
    try:
        data = request.get_json(force=True, silent=True) or {}
        result = analyze(_graph_from_request(), data.get("inputShape"), registry, data.get("style"))
        return jsonify({"ok": True, **result.to_dict()})
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.exception("Analysis failed")
        return _error(f"Internal Error: {str(e)}", 500)


# --- Socket.IO ---

def _debouncer_for(sid: str) -> Debouncer:
    with debouncers_lock:
        debouncer = debouncers.get(sid)
        if debouncer is None:
            debouncer = Debouncer(config.DEBOUNCE_SECONDS)
            debouncers[sid] = debouncer
        return debouncer


@socketio.on('connect')
def handle_connect():
    logger.info("Editor connected")


@socketio.on('disconnect')
def handle_disconnect():
    with debouncers_lock:
        debouncer = debouncers.pop(request.sid, None)
    if debouncer is not None:
        debouncer.cancel()
    logger.info("Editor disconnected")


@socketio.on('graph_changed')
def handle_graph_changed(payload):
    sid = request.sid
    graph = payload.get("graph", payload) if isinstance(payload, dict) else payload
    input_shape = payload.get("inputShape") if isinstance(payload, dict) else None

    def compute():
        try:
            return {"ok": True, **analyze(graph, input_shape, registry).to_dict()}
        except ValueError as e:
            return {"ok": False, "error": str(e)}

    def deliver(result):
        socketio.emit('analysis', result, to=sid)

    _debouncer_for(sid).schedule(compute, deliver)


@socketio.on('request_logs')
def handle_request_logs():
    emit('log_history', list(log_history))


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug_mode = os.environ.get("FLASK_DEBUG", "0") == "1"
    logger.info(f"LayerFlow service listening on port {port}")
    socketio.run(app, host="0.0.0.0", port=port, debug=debug_mode, allow_unsafe_werkzeug=True)
