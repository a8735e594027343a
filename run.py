# run.py

import os

import uvicorn

port = int(os.environ.get("PORT", 8000))

if __name__ == "__main__":
    uvicorn.run(
        "dripster.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )
