"""Magic values, endpoints, templates and user-facing messages for img2prompt."""

# Local storage keys (one JSON document per key)
STORAGE_KEY_HISTORY = "analysis_history"
STORAGE_KEY_API_CONFIG = "api_config"
STORAGE_KEY_SETTINGS = "user_settings"
STORAGE_QUOTA_BYTES = 5 * 1024 * 1024
PREVIEW_DIRNAME = "previews"

# User preference defaults
LANGUAGES = ("zh", "en")
OUTPUT_FORMATS = ("detailed", "concise")
DEFAULT_LANGUAGE = "zh"
DEFAULT_OUTPUT_FORMAT = "detailed"
DEFAULT_AUTO_SAVE = True
DEFAULT_MAX_HISTORY_ITEMS = 9000

# History views
SORT_OPTIONS = ("newest", "oldest", "name")
PERIOD_OPTIONS = ("all", "today", "week", "month")

# Image preparation
SUPPORTED_IMAGE_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
)
MAX_FILE_SIZE = 10 * 1024 * 1024
MEGABYTE = 1024 * 1024
COMPRESS_THRESHOLD_MB = 1
COMPRESS_QUALITY = 0.8
COMPRESS_MAX_SIZE_MB = 1
COMPRESS_MAX_DIMENSION = 1920
COMPRESS_MIN_QUALITY = 0.3
COMPRESS_QUALITY_STEP = 0.1
COMPRESS_SCALE_STEP = 0.8
DEFAULT_IMAGE_NAME = "image"
IMAGE_ID_PREFIX = "img"

# Remote image hosting (ImgBB)
IMGBB_UPLOAD_URL = "https://api.imgbb.com/1/upload"
IMGBB_MAX_FILE_SIZE = 32 * 1024 * 1024
IMGBB_SUPPORTED_FORMATS = ("JPG", "PNG", "GIF", "BMP", "WEBP")
IMGBB_MAX_DIMENSION = 65000
IMGBB_TEST_IMAGE_NAME = "test"
# 1x1 transparent PNG used to probe a hosting key
IMGBB_TEST_IMAGE = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

# Remote analysis (OpenRouter, OpenAI-compatible)
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemma-3-27b-it:free"
AVAILABLE_MODELS = (
    "google/gemma-3-27b-it:free",
    "meta-llama/llama-4-maverick:free",
    "google/gemini-flash-1.5",
    "anthropic/claude-3-haiku",
    "openai/gpt-3.5-turbo",
)
ANALYSIS_MAX_TOKENS = 1000
ANALYSIS_TEMPERATURE = 0.7
KEY_TEST_MESSAGE = "Hello"
KEY_TEST_MAX_TOKENS = 1

# Outbound calls
REQUEST_TIMEOUT = 30
KEY_TEST_TIMEOUT = 10
DEFAULT_APP_REFERER = "http://localhost"
DEFAULT_APP_TITLE = "Image to Prompt App"

PROMPT_TEMPLATES = {
    "zh": (
        "请你同时扮演「图片提示词反推专家」和「合规审核优化师」，处理我提供的图片："
        "先拆解图片 8 个核心视觉维度（主体信息、衣物/材质、场景环境、艺术风格、构图视角、"
        "色彩光影、细节特效、氛围情绪），确保捕捉所有关键视觉细节，不遗漏信息；"
        "再基于拆解结果按以下规则完成合规优化：暴露衣物替换为日常款（如长袖 T 恤、直筒裤、连衣裙），"
        "暧昧姿势调整为自然动作（如站立、微笑平视），私密场景改为中性场景（如客厅、户外草地）；"
        "删除“性感/诱惑/暴露/挑逗”等词，将“紧身/深 V”替换为“合身/圆领”；"
        "“性感氛围”改为“舒适日常氛围”，“暧昧光影”改为“柔和自然光”。"
        "无需展示拆解和优化过程，直接将合规后的信息整合成一段逻辑连贯、"
        "可直接用于 MidJourney/Stable Diffusion 的提示词，最终仅输出「最终合规提示词」的内容，"
        "确保没有任何 NSFW 元素，并高度还原原图的视觉风格、构图、光影和氛围。请使用中文回答"
    ),
    "en": (
        'Act as both an "Image Prompt Reverse-Engineering Expert" and a "Compliance Review Optimizer" '
        "for the image I provide. First, break the image down into 8 core visual dimensions "
        "(subject, clothing/materials, scene and environment, artistic style, composition and "
        "perspective, color and lighting, fine details and effects, atmosphere and mood) so that no "
        "key visual detail is missed. Then rewrite the result under these rules: replace revealing "
        "clothing with everyday styles (long-sleeved T-shirts, straight-leg pants, dresses); turn "
        "suggestive poses into natural actions (standing, smiling, looking straight ahead); move "
        "private settings to neutral ones (living room, outdoor lawn); drop words such as "
        '"sexy/tempting/revealing/teasing" and replace "tight/deep V" with "fitted/round neck"; '
        'change "sexy atmosphere" to "comfortable everyday atmosphere" and "ambiguous lighting" to '
        '"soft natural light". Do not show the breakdown or the rewriting steps. Merge everything '
        "into one coherent prompt ready for MidJourney/Stable Diffusion and output only the "
        '"Final Compliant Prompt", with no NSFW elements, faithfully keeping the original visual '
        "style, composition, lighting and atmosphere. Please answer in English"
    ),
}

# Validation messages
MSG_UNSUPPORTED_TYPE = "Unsupported file type. Supported types: %s"
MSG_FILE_TOO_LARGE = "File is too large. Maximum size is %s"
MSG_HOSTING_FILE_TOO_LARGE = "File exceeds the hosting limit (%dMB)"
MSG_HOSTING_UNSUPPORTED_FORMAT = "Unsupported file format. Supported formats: %s"
MSG_INVALID_URL = "Not a valid image URL: %s"

# Image preparation failures
MSG_COMPRESSION_FAILED = "Image compression failed"
MSG_DIMENSIONS_FAILED = "Could not read image dimensions"
MSG_URL_HTTP_ERROR = "Could not load image from URL (HTTP %d)"
MSG_URL_NOT_IMAGE = "URL does not point to an image"
MSG_PROCESSING_FAILED = "Image processing failed"

# Configuration errors
MSG_NO_IMAGE = "Select an image first"
MSG_NO_OPENROUTER_KEY = "Set an OpenRouter API key first"
MSG_NO_IMGBB_KEY = "Set an ImgBB API key first"
MSG_ANALYSIS_IN_PROGRESS = "An analysis is already running"

# Hosting errors
MSG_UPLOAD_FAILED = "Image upload failed"
MSG_HOSTING_INVALID_IMAGE = "Unsupported image format or invalid image data"
MSG_HOSTING_INVALID_KEY = "Invalid ImgBB API key"
MSG_HOSTING_ACCESS_DENIED = "Access denied, check the key permissions"
MSG_HOSTING_TOO_LARGE = "Image file is too large"
MSG_HOSTING_RATE_LIMITED = "Upload rate limit exceeded, try again later"
MSG_HOSTING_SERVER_ERROR = "ImgBB server error"
MSG_HOSTING_GENERIC = "Upload failed: %s"

# Analysis errors
MSG_ANALYSIS_INVALID_KEY = "API key is invalid or expired"
MSG_ANALYSIS_ACCESS_DENIED = "API access denied, check permissions. Details: %s"
MSG_ANALYSIS_RATE_LIMITED = "API rate limit exceeded, try again later"
MSG_ANALYSIS_SERVER_ERROR = "API server error"
MSG_ANALYSIS_GENERIC = "API request failed (%s): %s"
MSG_MALFORMED_RESPONSE = "API returned a malformed response"
MSG_EMPTY_RESPONSE = "API returned no content"
MSG_ANALYSIS_FAILED = "Image analysis failed"

# Transport
MSG_NETWORK_ERROR = "Network connection failed, check your network settings"

# Log lines
MSG_HOSTING_FALLBACK = "ImgBB upload failed, analysing local file instead: %s"
MSG_STORAGE_READ_FAILED = "Storage read failed for %s: %s, using defaults"
MSG_STORAGE_WRITE_FAILED = "Storage write failed for %s: %s"
MSG_STORAGE_QUOTA = "%s needs %d bytes, quota is %d"
MSG_IMPORT_FAILED = "History import failed: %s"
MSG_RECORD_SKIPPED = "Skipping malformed history entry: %s"
MSG_INVALID_MAX_ITEMS = "Ignoring invalid maxHistoryItems %r, keeping %d"
