"""
Main FastAPI application for Car Studio
Upload a car photo, detect its wheels and body, and generate transparent
modification layers (new wheels, new paint) that the frontend stacks over
the original photo.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from catalog import list_catalog
from compositor import DEFAULT_CHANGE_THRESHOLD, DIFFERENCE_COMPOSITE_THRESHOLD
from config import ALLOWED_ORIGINS, PipelineConfig, ReplicateConfig
from errors import CarStudioError, ConfigError, FormatError
from image_codec import image_to_data_uri
from image_processor import ImageProcessor
from replicate_client import ReplicateClient

logger = logging.getLogger(__name__)

# Global image processor instance
image_processor: Optional[ImageProcessor] = None


def build_processor() -> ImageProcessor:
    """
    Build the model client and processor from the environment.

    Raises:
        ConfigError: if the configuration is unusable
    """
    replicate_config = ReplicateConfig.from_env().validate()
    pipeline_config = PipelineConfig.from_env().validate()
    return ImageProcessor(ReplicateClient(replicate_config), pipeline_config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager: build the Replicate client once on startup.
    """
    global image_processor

    print("=" * 60)
    print("Initializing Car Studio Backend...")
    print("=" * 60)
    try:
        image_processor = build_processor()
        print(f"Replicate API URL: {image_processor.client.api_url}")
        print("✅ Backend initialized successfully!")
    except ConfigError as e:
        print(f"⚠️  Warning: Could not initialize: {e.message}")
        print("Model-backed endpoints will answer 503 until the configuration is fixed")
        image_processor = None
    print("=" * 60)

    yield  # Application runs here

    print("Shutting down backend...")


app = FastAPI(
    title="Car Studio API",
    description="Mask-guided wheel and paint visualization for car photos",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=False,                   # No auth/cookies needed - file upload only
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],                       # multipart/form-data uploads
)


@app.exception_handler(CarStudioError)
async def car_studio_error_handler(request: Request, exc: CarStudioError):
    logger.error(f"[{request.url.path}] {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"[{request.url.path}] Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": CarStudioError.kind, "message": f"Internal server error: {str(exc)}"},
    )


def get_processor() -> ImageProcessor:
    if image_processor is None:
        raise ConfigError("Image processor not initialized. Check REPLICATE_API_TOKEN.")
    return image_processor


async def read_image_upload(file: UploadFile) -> bytes:
    if not file.content_type or not file.content_type.startswith("image/"):
        raise FormatError("File must be an image")
    data = await file.read()
    if not data:
        raise FormatError("No image provided")
    return data


@app.get("/")
async def root():
    """Root endpoint - health check"""
    return {
        "message": "Car Studio API",
        "status": "running",
        "processor_ready": image_processor is not None,
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "processor_ready": image_processor is not None,
    }


@app.get("/catalog")
async def catalog():
    return list_catalog()


@app.post("/detect-wheels")
async def detect_wheels(image: UploadFile = File(..., description="Car photo")):
    """Wheel mask (white = wheel), aligned to the photo and limited to the largest wheels."""
    processor = get_processor()
    data = await read_image_upload(image)
    detection = await processor.detect_wheel_mask(data)
    return detection.to_dict("wheelMask")


@app.post("/detect-body")
async def detect_body(image: UploadFile = File(..., description="Car photo")):
    """Body mask (white = body) of the foreground vehicle only."""
    processor = get_processor()
    data = await read_image_upload(image)
    detection = await processor.detect_body_mask(data)
    return detection.to_dict("bodyMask")


@app.post("/detect-masks")
async def detect_masks(image: UploadFile = File(..., description="Car photo")):
    """
    Upload-time detection: wheels and body in parallel.

    Always 200 once the photo decodes; a failed detection shows up as a
    null mask plus an entry under "errors".
    """
    processor = get_processor()
    data = await read_image_upload(image)
    return await processor.detect_masks(data)


@app.post("/replace-wheels")
async def replace_wheels(
    image: UploadFile = File(..., description="Original car photo"),
    wheelMask: Optional[str] = Form(None, description="Wheel mask data URI from /detect-wheels"),
    selectedWheel: str = Form("", description="Wheel catalog id"),
):
    """Transparent PNG layer containing only the new wheels."""
    processor = get_processor()
    data = await read_image_upload(image)
    result = await processor.generate_wheel_layer(data, wheelMask, selectedWheel)
    return {"message": "Wheels replaced successfully", **result.to_dict()}


@app.post("/paint-body")
async def paint_body(
    image: UploadFile = File(..., description="Original car photo"),
    selectedPaint: str = Form("", description="Paint catalog id"),
    bodyMask: Optional[str] = Form(None, description="Pre-computed body mask data URI"),
    wheelMask: Optional[str] = Form(None, description="Wheel mask data URI, kept out of the paint layer"),
):
    """Transparent PNG layer containing only the repainted body."""
    processor = get_processor()
    data = await read_image_upload(image)
    result = await processor.generate_paint_layer(data, selectedPaint, body_mask=bodyMask, wheel_mask=wheelMask)
    return {"message": "Body painted successfully", **result.to_dict()}


@app.post("/compose-preview")
async def compose_preview(
    image: UploadFile = File(..., description="Original car photo"),
    layers: List[str] = Form(..., description="Layer data URIs, bottom first"),
):
    """Flattened preview of the original with the given layers applied."""
    processor = get_processor()
    data = await read_image_upload(image)
    preview = processor.compose_preview(data, layers)
    return {"success": True, "previewUrl": image_to_data_uri(preview)}


@app.post("/inpaint-wheels")
async def inpaint_wheels(
    image: UploadFile = File(..., description="Original car photo"),
    wheelMask: Optional[str] = Form(None, description="Wheel mask data URI from /detect-wheels"),
    selectedWheel: str = Form("", description="Wheel catalog id"),
):
    """Wheel layer from the inpainting model, cut out through the same wheel mask."""
    processor = get_processor()
    data = await read_image_upload(image)
    result = await processor.generate_inpainted_wheel_layer(data, wheelMask, selectedWheel)
    return {"message": "Wheels inpainted successfully", **result.to_dict()}


@app.post("/difference-layer")
async def difference_layer(
    image: UploadFile = File(..., description="Original car photo"),
    candidate: UploadFile = File(..., description="Generated image to diff against the original"),
    regionMask: Optional[str] = Form(None, description="Optional region mask data URI"),
    maskMode: str = Form("include", description='"include" or "exclude"'),
    threshold: int = Form(DEFAULT_CHANGE_THRESHOLD, description="Per-channel change threshold"),
):
    """Transparent layer of the pixels the generator changed."""
    processor = get_processor()
    data = await read_image_upload(image)
    candidate_data = await read_image_upload(candidate)
    layer = processor.extract_difference_layer(data, candidate_data, regionMask, maskMode, threshold)
    return {"success": True, "layerUrl": image_to_data_uri(layer)}


@app.post("/difference-composite")
async def difference_composite(
    image: UploadFile = File(..., description="Original car photo"),
    candidate: UploadFile = File(..., description="Generated image to merge"),
    threshold: int = Form(DIFFERENCE_COMPOSITE_THRESHOLD, description="Per-channel change threshold"),
):
    """Original with only the changed pixels taken from the candidate."""
    processor = get_processor()
    data = await read_image_upload(image)
    candidate_data = await read_image_upload(candidate)
    merged = processor.merge_differences(data, candidate_data, threshold)
    return {"success": True, "resultUrl": image_to_data_uri(merged)}


@app.post("/analyze-vehicle")
async def analyze_vehicle(image: UploadFile = File(..., description="Car photo")):
    processor = get_processor()
    data = await read_image_upload(image)
    description = await processor.analyze_vehicle(data)
    return {"success": True, "description": description}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8384,
        reload=False,
    )
