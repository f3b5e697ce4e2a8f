import os

# Base paths
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))

# Directory holding JSON scene dumps and their .resS resources - can be
# overridden by env var or manually changed here
ASSETS_PATH = os.environ.get("UNITYSCENE_ASSETS_PATH", os.path.join(PROJECT_ROOT, "assets"))

# Output paths
OUTPUT_DIR = os.environ.get("UNITYSCENE_OUTPUT_DIR", os.path.join(PROJECT_ROOT, "output"))
REPORTS_DIR = os.path.join(OUTPUT_DIR, "reports")

# Logging
LOG_LEVEL = os.environ.get("UNITYSCENE_LOG_LEVEL", "INFO")
