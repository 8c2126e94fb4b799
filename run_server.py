import logging

import uvicorn

from predictions.config import DispatchConfig

if __name__ == "__main__":
    config = DispatchConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    print("Starting Prediction Dispatch API...")
    print("Docs available at: http://localhost:8000/docs")

    uvicorn.run(
        "predictions.api.server:app",
        host="0.0.0.0",
        port=8000,
        reload=False
    )
