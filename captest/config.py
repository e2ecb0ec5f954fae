"""
Configuration and constants for the capture-to-artifact pipeline.
"""

# Image encoding
DEFAULT_JPEG_QUALITY = 85

# Line grouping: tolerance band as a fraction of the median region height
DEFAULT_LINE_TOLERANCE = 0.5

# LLM analysis
DEFAULT_PROVIDER = "openai"
PROVIDERS = ("openai", "ollama")
DEFAULT_BASE_URL = "http://localhost:1234"
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
DEFAULT_PROMPT = "Describe this image."
DEFAULT_ANALYSIS_MODEL = "gemma3:4b"
DEFAULT_TEMPERATURE = 0.1
DEFAULT_TIMEOUT_SECONDS = 30.0

# PaddleOCR models
OCR_DETECTION_MODEL = "PP-OCRv5_mobile_det"
OCR_RECOGNITION_MODEL = "en_PP-OCRv5_mobile_rec"
OCR_DET_LIMIT_SIDE_LEN = 1080  # detector won't process larger than this
OCR_RECOGNITION_BATCH_SIZE = 4

# Output artifact
SCREENSHOT_FILENAME_TEMPLATE = "screenshot_{timestamp}.jpg"
JPEG_SUFFIXES = (".jpg", ".jpeg")
