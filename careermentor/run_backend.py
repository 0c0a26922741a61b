#!/usr/bin/env python
"""
Backend runner for CareerMentor.

    python -m careermentor.run_backend
"""
import os

import uvicorn


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    print(f"\n[INFO] Starting backend server on {host}:{port}...")
    uvicorn.run("careermentor.main:app", host=host, port=port, proxy_headers=True)


if __name__ == "__main__":
    main()
