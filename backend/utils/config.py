"""Configuration from environment."""
import os

from dotenv import load_dotenv

load_dotenv()

PORT = int(os.environ.get("PORT", "8001"))
HOST = os.environ.get("HOST", "0.0.0.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Backend authority issuing sessions for this dock.
BACKEND_URL = os.environ.get("BACKEND_URL", "")
DOCK_ID = os.environ.get("DOCK_ID", "")
DOCK_SECRET = os.environ.get("DOCK_SECRET", "")
HTTP_TIMEOUT_S = float(os.environ.get("HTTP_TIMEOUT_S", "15"))

# Tick cadence (wall-clock seconds). SIM_SECONDS_PER_TICK is the simulated
# charging time each power tick represents; raise it to accelerate a session.
POWER_TICK_S = float(os.environ.get("POWER_TICK_S", "1"))
LOG_TICK_S = float(os.environ.get("LOG_TICK_S", "1"))
SIM_SECONDS_PER_TICK = float(os.environ.get("SIM_SECONDS_PER_TICK", str(POWER_TICK_S)))
PING_INTERVAL_S = float(os.environ.get("PING_INTERVAL_S", "10"))
HEARTBEAT_INTERVAL_S = float(os.environ.get("HEARTBEAT_INTERVAL_S", "10"))
