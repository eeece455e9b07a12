import os


def _env_float(name, default):
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name, default):
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


LOG_FILE = os.environ.get("FCFF_LOG_FILE", "app.log")

LOG_LEVEL = os.environ.get("FCFF_LOG_LEVEL", "INFO").upper()

MAX_UPLOAD_MB = _env_int("FCFF_MAX_UPLOAD_MB", 50)

# Batch extraction fans files out over this many threads
EXTRACTION_WORKERS = _env_int("FCFF_EXTRACTION_WORKERS", 4)

MONTE_CARLO_ITERATIONS = _env_int("FCFF_MC_ITERATIONS", 1000)

MONTE_CARLO_MAX_ITERATIONS = _env_int("FCFF_MC_MAX_ITERATIONS", 100000)

MONTE_CARLO_WORKERS = _env_int("FCFF_MC_WORKERS", 4)

# Percent, like every other rate in the model
WACC = _env_float("FCFF_WACC", 11.0)

TERMINAL_GROWTH = _env_float("FCFF_TERMINAL_GROWTH", 4.0)

# Pages with less extractable text than this are sent to OCR
OCR_TEXT_THRESHOLD = _env_int("FCFF_OCR_TEXT_THRESHOLD", 30)

OCR_RESOLUTION = _env_int("FCFF_OCR_RESOLUTION", 150)
