"""
Global constants for the tuition extraction pipeline.

Centralizes thresholds, limits and query templates used by the
extractor, verifiers, quota guard and retry controller.
"""

# Gemini
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_OUTPUT_TOKENS = 2048
EXTRACTION_TIMEOUT_SECONDS = 60  # Wall-clock limit per grounded extraction call
VERIFICATION_TIMEOUT_SECONDS = 30  # Wall-clock limit per cross-verification call

# Transient error retry (per Gemini call, not a pipeline retry)
API_MAX_RETRIES = 3
API_INITIAL_BACKOFF_SECONDS = 1.0  # Doubles each retry: 1s, 2s, 4s
API_MAX_BACKOFF_SECONDS = 10.0
RETRYABLE_ERROR_MARKERS = (
    "429",
    "quota",
    "503",
    "unavailable",
    "500",
    "internal",
    "timeout",
    "RESOURCE_EXHAUSTED",
    "UNAVAILABLE",
    "DEADLINE_EXCEEDED",
    "INTERNAL",
)

# Quota Guard
DAILY_QUOTA_LIMIT = 1_000_000
QUOTA_WARNING_THRESHOLD = 0.80  # Warn at 80% usage
QUOTA_CRITICAL_THRESHOLD = 0.95  # Critical alert at 95% usage

# Retry Controller
MAX_EXTRA_ATTEMPTS = 1  # Hard cap: one re-extraction per record

# Raw content limits
RAW_CONTENT_MAX_LENGTH = 9900  # Aggregated raw_content across sources
SOURCE_CONTENT_MAX_LENGTH = 9950  # Per-source extracted text
MIN_SOURCE_TEXT_LENGTH = 10  # Shorter grounding segments are ignored
MAX_VALIDATED_SOURCES = 3
AI_CONTENT_EXCERPT_LENGTH = 1500  # Raw content sent to the cross-verifier
CITATION_SNIPPET_LENGTH = 200

# Calculation check (relative difference between stated and computed tuition)
CALCULATION_MATCH_TOLERANCE = 0.05  # <= 5% passes
CALCULATION_MINOR_TOLERANCE = 0.15  # 5-15% minor issue, > 15% hard failure

# Plausibility ranges (USD / credits)
TUITION_MIN = 5_000
TUITION_MAX = 300_000
COST_PER_CREDIT_MIN = 100
COST_PER_CREDIT_MAX = 5_000
TOTAL_CREDITS_MIN = 20
TOTAL_CREDITS_MAX = 100

# Completeness score weights (sum to 100)
REQUIRED_FIELDS = ("tuition_amount", "tuition_period", "academic_year")
IMPORTANT_FIELDS = ("cost_per_credit", "total_credits", "program_length")
OPTIONAL_FIELDS = ("actual_program_name", "is_stem", "additional_fees", "remarks")
REQUIRED_WEIGHT = 50
IMPORTANT_WEIGHT = 35
OPTIONAL_WEIGHT = 15

# Completeness buckets for reasoning text
COMPLETENESS_EXCELLENT = 80
COMPLETENESS_GOOD = 60

# Resolver
RETRY_ISSUE_THRESHOLD = 3  # Aggregate rule issues that force a retry

# Verification cache
VERIFICATION_CACHE_TTL_DAYS = 7

# Batch processing
DEFAULT_BATCH_SIZE = 10

# Query templates
FALLBACK_SEARCH_QUERY = '"{school}" "{program}" tuition fees official site:.edu'
DEFAULT_SEARCH_QUERY = '"{school}" "{program}" tuition fees site:.edu'
GOOGLE_SEARCH_URL = "https://www.google.com/search?q={query}"

# Low-quality aggregators ignored as tuition sources
BLOCKED_DOMAINS = (
    "clearadmit.com",
    "poetsandquants.com",
    "shiksha.com",
    "collegechoice.net",
    "usnews.com",
    "bloomberg.com",
    "fortune.com",
    "niche.com",
    "collegevine.com",
    "princetonreview.com",
    "reddit.com",
    "quora.com",
)

# Hosts Gemini uses to proxy grounding sources
GROUNDING_REDIRECT_HOSTS = ("vertexaisearch.cloud.google.com",)

# Program name variations, used to derive alternative retry queries
PROGRAM_VARIATIONS = {
    "part-time mba": ["Professional MBA", "Weekend MBA", "Evening MBA", "Flex MBA", "Working Professional MBA"],
    "professional mba": ["Part-Time MBA", "Weekend MBA", "Evening MBA", "Flex MBA", "Working Professional MBA"],
    "weekend mba": ["Part-Time MBA", "Professional MBA", "Evening MBA", "Flex MBA"],
    "evening mba": ["Part-Time MBA", "Professional MBA", "Weekend MBA", "Flex MBA"],
    "flex mba": ["Part-Time MBA", "Professional MBA", "Flexible MBA", "Evening MBA"],
    "executive mba": ["EMBA", "Exec MBA", "Executive MBA Program"],
    "emba": ["Executive MBA", "Exec MBA", "Executive MBA Program"],
    "full-time mba": ["Two-Year MBA", "Residential MBA", "Traditional MBA", "Full-Time MBA Program", "MBA"],
    "two-year mba": ["Full-Time MBA", "Residential MBA", "Traditional MBA", "MBA"],
    "online mba": ["Distance MBA", "Remote MBA", "Virtual MBA", "Online MBA Program"],
    "ms finance": ["Master of Science in Finance", "MSF", "MS in Finance", "Master in Finance"],
    "msf": ["MS Finance", "Master of Science in Finance", "MS in Finance"],
    "ms accounting": ["Master of Science in Accounting", "MSA", "MAcc", "Master of Accountancy"],
    "ms marketing": ["Master of Science in Marketing", "MSM", "MS in Marketing"],
    "ms business analytics": [
        "MSBA",
        "Master of Business Analytics",
        "MS Analytics",
        "Master of Science in Business Analytics",
    ],
    "msba": ["MS Business Analytics", "Master of Business Analytics", "MS Analytics"],
    "ms information systems": ["MSIS", "MS in Information Systems", "Master of Information Systems", "MS IT"],
    "msis": ["MS Information Systems", "Master of Information Systems", "MS in IS"],
    "mba": ["Full-Time MBA", "Two-Year MBA", "MBA Program"],
}
