from flask import Flask, request, jsonify
import os
import logging
import numbers

import config
from fcff_errors import FCFFError, InvalidAssumptionError
from financialanalyzer import analyze_files
from dcf_valuation import FCFFInputs, project_fcff, run_fcff_model
from sensitivity_analysis import sweep, summarize_sensitivity
from monte_carlo import simulate

# =============================================================================
# APP SETUP
# =============================================================================
app = Flask(__name__)

app.config['MAX_CONTENT_LENGTH'] = config.MAX_UPLOAD_MB * 1024 * 1024

# Errors and estimation warnings go to a file, not stdout
logging.basicConfig(
    filename=config.LOG_FILE,
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s %(message)s'
)


# =============================================================================
# HELPERS
# =============================================================================
def err(msg, code=500):
    """Error response; 500s get a generic message, the detail goes to app.log."""
    app.logger.error(msg)
    friendly = {
        404: "Resource not found.",
        413: f"File too large. Maximum allowed size is {config.MAX_UPLOAD_MB} MB.",
        500: "Something went wrong on our end. Please try again.",
    }
    message = msg if code == 400 else friendly.get(code, "An error occurred.")
    return jsonify({"error": message}), code


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidAssumptionError("Request body must be a JSON object")
    return data


def number_field(data, key, required=True, default=None):
    value = data.get(key, default)
    if value is None and not required:
        return None
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidAssumptionError(f"{key} must be a number")
    return value


def model_inputs(data):
    return FCFFInputs.from_dict(data.get('inputs') or {})


# =============================================================================
# ERROR HANDLERS
# =============================================================================
@app.errorhandler(FCFFError)
def domain_error(e):
    return err(e.message, 400)


@app.errorhandler(404)
def not_found(_):
    return err("Resource not found.", 404)


@app.errorhandler(413)
def too_large(_):
    return err("Upload exceeded MAX_CONTENT_LENGTH", 413)


@app.errorhandler(500)
def server_error(e):
    return err(f"Unhandled error: {getattr(e, 'original_exception', e)!r}", 500)


# =============================================================================
# ROUTES
# =============================================================================
@app.route('/health')
def health():
    return jsonify({"status": "ok"})


@app.route('/extract', methods=['POST'])
def extract():
    """
    Multipart upload: one or more `files`, optional `ai_metrics` (JSON text
    from an external model). Files are processed in memory, never stored.
    """
    uploads = [f for f in request.files.getlist('files') if f and f.filename]
    if not uploads:
        return err("No files uploaded. Send one or more files in the 'files' field.", 400)

    files = [(f.filename, f.read(), f.mimetype) for f in uploads]
    ai_metrics = request.form.get('ai_metrics') or None
    results = analyze_files(files, ai_metrics=ai_metrics)
    return jsonify({
        "success": any(r["success"] for r in results),
        "results": results,
    })


@app.route('/fcff/project', methods=['POST'])
def fcff_project():
    data = json_body()
    inputs = model_inputs(data)
    result = run_fcff_model(
        number_field(data, 'baseRevenue'),
        inputs,
        wacc=number_field(data, 'wacc', required=False),
        terminal_growth=number_field(data, 'terminalGrowth', required=False),
    )
    return jsonify(result)


@app.route('/fcff/sensitivity', methods=['POST'])
def fcff_sensitivity():
    data = json_body()
    inputs = model_inputs(data)
    results = sweep(
        inputs,
        number_field(data, 'baseRevenue'),
        number_field(data, 'baseTerminalFcff', required=False),
    )
    return jsonify({
        "results": [r.to_dict() for r in results],
        "summary": summarize_sensitivity(results),
    })


@app.route('/fcff/monte-carlo', methods=['POST'])
def fcff_monte_carlo():
    data = json_body()
    inputs = model_inputs(data)
    base_revenue = number_field(data, 'baseRevenue')
    iterations = number_field(data, 'iterations', required=False)
    if iterations is not None and not float(iterations).is_integer():
        raise InvalidAssumptionError("iterations must be a whole number")
    seed = number_field(data, 'seed', required=False)
    if seed is not None and (seed < 0 or not float(seed).is_integer()):
        raise InvalidAssumptionError("seed must be a non-negative whole number")
    result = simulate(
        inputs,
        project_fcff(base_revenue, inputs),
        None if iterations is None else int(iterations),
        seed=None if seed is None else int(seed),
        base_revenue=base_revenue,
    )
    return jsonify(result)


# =============================================================================
# Production server start: debug=False, use gunicorn in real deploy
# =============================================================================
if __name__ == '__main__':
    debug_mode = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    port       = int(os.environ.get('PORT', 5000))

    print('=' * 55)
    print(' FCFF Analyzer - Starting Server')
    print('=' * 55)
    print(f' Mode  : {"DEVELOPMENT" if debug_mode else "PRODUCTION"}')
    print(f' Port  : {port}')
    print('=' * 55)

    app.run(debug=debug_mode, host='0.0.0.0', port=port)
