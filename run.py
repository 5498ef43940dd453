import uvicorn
from export_assistant.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "export_assistant.main:app",
        host="localhost",
        port=settings.port,
        reload=settings.debug
    )
