from fastapi import APIRouter

from .routes_daos import browse_daos, get_dao, get_dao_proposals, get_dao_voter_record, get_featured_daos
from .routes_edge import get_registry, post_rpc, post_summarize
from .routes_proposals import get_proposal_detail, get_proposal_vote_record
from .routes_wallets import get_wallet_daos, get_wallet_votes, post_wallet_alerts

router = APIRouter()

# Edge functions
router.add_api_route("/api/registry", get_registry, methods=["GET"])
router.add_api_route("/api/rpc", post_rpc, methods=["POST"])
router.add_api_route("/api/summarize", post_summarize, methods=["POST"])

# Wallet-scoped aggregation
router.add_api_route("/api/wallets/{wallet}/daos", get_wallet_daos, methods=["GET"])
router.add_api_route("/api/wallets/{wallet}/votes", get_wallet_votes, methods=["GET"])
router.add_api_route("/api/wallets/{wallet}/alerts", post_wallet_alerts, methods=["POST"])

# Static paths before /api/daos/{realm_id}
router.add_api_route("/api/daos/featured", get_featured_daos, methods=["GET"])
router.add_api_route("/api/daos/browse", browse_daos, methods=["GET"])
router.add_api_route("/api/daos/{realm_id}", get_dao, methods=["GET"])
router.add_api_route("/api/daos/{realm_id}/proposals", get_dao_proposals, methods=["GET"])
router.add_api_route("/api/daos/{realm_id}/voter-record", get_dao_voter_record, methods=["GET"])

router.add_api_route("/api/proposals/{proposal_id}", get_proposal_detail, methods=["GET"])
router.add_api_route("/api/proposals/{proposal_id}/vote-record", get_proposal_vote_record, methods=["GET"])
