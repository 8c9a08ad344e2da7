"""
Run the realtime server with uvicorn.

Usage:
    JWT_SECRET=... python run_server.py
"""

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("lexidraft:application", factory=True, host="0.0.0.0", port=8000)
