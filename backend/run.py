#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Uses the fake payment gateway unless ASAAS_MOCK_MODE is set to false.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ASAAS_MOCK_MODE", "true")

import uvicorn

if __name__ == "__main__":
    print("Starting roombook API at http://localhost:8000 (docs at /docs)")
    uvicorn.run("roombook.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
