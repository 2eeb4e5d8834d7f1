#!/usr/bin/env python3
"""
Development server launcher for the Grant Pipeline API.

This script starts the FastAPI server with appropriate settings for development.
For production, run the app under a proper ASGI server deployment.
"""

import uvicorn
from pathlib import Path

project_root = Path(__file__).parent
package_path = project_root / "grant_pipeline"

if __name__ == "__main__":
    print("Starting Grant Pipeline API Development Server")
    print(f"Project root: {project_root}")
    print("Server will be available at: http://localhost:8000")
    print("API documentation at: http://localhost:8000/docs")
    print("\n" + "="*50 + "\n")

    uvicorn.run(
        "grant_pipeline.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,     # Auto-reload on code changes (development only)
        reload_dirs=[str(package_path)],
        log_level="info"
    )
