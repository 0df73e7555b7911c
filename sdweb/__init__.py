"""
sdweb: browse, download, upload and manage a filesystem subtree over HTTP
Built with FastAPI + Uvicorn + aiofiles
"""

__version__ = "1.0.0"
