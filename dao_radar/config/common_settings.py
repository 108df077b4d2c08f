import os

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


# --------------------------------------------------
# Chain / RPC Configuration
# --------------------------------------------------
SOLANA_RPC_URL = os.environ.get("SOLANA_RPC_URL") or "https://api.mainnet-beta.solana.com"
RPC_COMMITMENT = os.environ.get("RPC_COMMITMENT", "confirmed")
RPC_TIMEOUT_SECONDS = _float_env("RPC_TIMEOUT_SECONDS", 10.0)
CONFIRM_TIMEOUT_SECONDS = _float_env("CONFIRM_TIMEOUT_SECONDS", 60.0)

# Well-known mainnet deployment of the SPL governance program
SPL_GOVERNANCE_PROGRAM_ID = (
    os.environ.get("SPL_GOVERNANCE_PROGRAM_ID") or "GovER5Lthms3bLBqWub97yVrMmEogzX7xNjdXpPPCVZw"
)

# --------------------------------------------------
# Aggregation Configuration
# --------------------------------------------------
AGGREGATION_CONCURRENCY = _int_env("AGGREGATION_CONCURRENCY", 3)
HISTORY_CONCURRENCY = _int_env("HISTORY_CONCURRENCY", 5)
RATE_LIMIT_MAX_RETRIES = _int_env("RATE_LIMIT_MAX_RETRIES", 2)
RATE_LIMIT_BASE_DELAY_SECONDS = _float_env("RATE_LIMIT_BASE_DELAY_SECONDS", 0.5)

# --------------------------------------------------
# Registry Configuration
# --------------------------------------------------
REGISTRY_URL = os.environ.get(
    "REGISTRY_URL",
    "https://raw.githubusercontent.com/solana-labs/governance-ui/main/public/realms/mainnet-beta.json",
)
REGISTRY_IMAGE_BASE_URL = os.environ.get("REGISTRY_IMAGE_BASE_URL", "https://app.realms.today")
REGISTRY_TTL_SECONDS = _float_env("REGISTRY_TTL_SECONDS", 3600.0)
REGISTRY_TIMEOUT_SECONDS = _float_env("REGISTRY_TIMEOUT_SECONDS", 10.0)

# --------------------------------------------------
# Local Store / Browse Cache / Notifications
# --------------------------------------------------
# When unset, all client-side stores are kept in memory for the process lifetime
LOCAL_STORE_PATH = os.environ.get("LOCAL_STORE_PATH")
BROWSE_CACHE_TTL_SECONDS = _float_env("BROWSE_CACHE_TTL_SECONDS", 1800.0)
SEEN_PROPOSALS_LIMIT = _int_env("SEEN_PROPOSALS_LIMIT", 500)
ALERT_TRACKER_MAX_WALLETS = _int_env("ALERT_TRACKER_MAX_WALLETS", 1000)
VOTE_STATE_MAX_ENTRIES = _int_env("VOTE_STATE_MAX_ENTRIES", 1000)

# --------------------------------------------------
# Proposal Description / Summarization
# --------------------------------------------------
DESCRIPTION_TIMEOUT_SECONDS = _float_env("DESCRIPTION_TIMEOUT_SECONDS", 5.0)
IPFS_GATEWAY_URL = os.environ.get("IPFS_GATEWAY_URL", "https://ipfs.io/ipfs/")
# Hosts (and their subdomains) that description links may be fetched from
DESCRIPTION_ALLOWED_HOSTS = [
    host.strip().lower()
    for host in os.environ.get(
        "DESCRIPTION_ALLOWED_HOSTS",
        "ipfs.io,dweb.link,w3s.link,nftstorage.link,gateway.pinata.cloud,cloudflare-ipfs.com,arweave.net,"
        "raw.githubusercontent.com,gist.githubusercontent.com,gist.github.com,github.com",
    ).split(",")
    if host.strip()
]
DESCRIPTION_MAX_BYTES = _int_env("DESCRIPTION_MAX_BYTES", 65536)

# Absence of the key puts the summarizer in fallback mode
GROQ_API_KEY = os.environ.get("GROQ_API_KEY")
SUMMARY_MODEL = os.environ.get("SUMMARY_MODEL", "llama-3.1-8b-instant")
SUMMARY_BASE_URL = os.environ.get("SUMMARY_BASE_URL", "https://api.groq.com/openai/v1")
SUMMARY_TIMEOUT_SECONDS = _float_env("SUMMARY_TIMEOUT_SECONDS", 15.0)
SUMMARY_CACHE_TTL_SECONDS = _float_env("SUMMARY_CACHE_TTL_SECONDS", 3600.0)
SUMMARY_CACHE_MAX_ENTRIES = _int_env("SUMMARY_CACHE_MAX_ENTRIES", 500)

# --------------------------------------------------
# RPC Proxy Configuration
# --------------------------------------------------
RPC_PROXY_BUCKET_CAPACITY = _float_env("RPC_PROXY_BUCKET_CAPACITY", 100.0)
RPC_PROXY_REFILL_RATE = _float_env("RPC_PROXY_REFILL_RATE", 50.0)  # tokens per second

# --------------------------------------------------
# HTTP Configuration
# --------------------------------------------------
ALLOWED_ORIGINS = os.environ.get("ALLOWED_ORIGINS", "")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = _int_env("PORT", 8000)
