from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import sys
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Add the app directory to Python path
app_dir = Path(__file__).parent
if str(app_dir) not in sys.path:
    sys.path.insert(0, str(app_dir))

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from api.guides import router as guides_router
from api.vehicles import router as vehicles_router

app = FastAPI(
    title="SpotOn Repair Guide API",
    description="Validated, cached, illustrated step-by-step repair guides",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(guides_router, prefix="/api", tags=["Guides"])
app.include_router(vehicles_router, prefix="/api/vehicles", tags=["Vehicles"])


@app.get("/")
async def root():
    return {
        "service": "SpotOn Repair Guide API",
        "status": "online",
        "version": "1.0.0",
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}
