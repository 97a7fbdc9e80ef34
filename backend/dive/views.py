# dive/views.py
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import exception_handler

from . import services
from .engine import payout_table
from .errors import ConfigurationError, DiveError, ErrorCode, InvariantViolation, NotFound
from .serializers import (
    AdvanceOut,
    AmountIn,
    CurvePointOut,
    CurveQueryIn,
    GameConfigIn,
    GameConfigOut,
    HouseVaultOut,
    OpenSessionIn,
    RevealOut,
    SessionOut,
    SettleOut,
    VaultAuditOut,
)

FORBIDDEN_CODES = {
    ErrorCode.SESSION_NOT_OWNED_BY_CALLER,
    ErrorCode.NOT_VAULT_AUTHORITY,
    ErrorCode.NOT_CONFIG_ADMIN,
}


# =====================================================
# ERRORS
# =====================================================

def status_for(exc: DiveError) -> int:
    if isinstance(exc, ConfigurationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvariantViolation):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if exc.code in FORBIDDEN_CODES:
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_409_CONFLICT


def dive_exception_handler(exc, context):
    """Render DiveError as {"code", "detail"}; defer everything else to DRF."""
    if isinstance(exc, DiveError):
        body = {"code": exc.code.value, "detail": exc.detail}
        if isinstance(exc, ConfigurationError):
            body["problems"] = exc.problems
        return Response(body, status=status_for(exc))
    return exception_handler(exc, context)


# =====================================================
# CONFIG
# =====================================================

@api_view(["GET", "PUT"])
@permission_classes([AllowAny])
def game_config(request):
    if request.method == "GET":
        return Response(GameConfigOut(services.get_config()).data)

    if not request.user.is_authenticated:
        return Response({"detail": "Authentication required"}, status=status.HTTP_401_UNAUTHORIZED)

    serializer = GameConfigIn(data=request.data)
    serializer.is_valid(raise_exception=True)
    cfg = services.replace_config(request.user, **serializer.validated_data)
    return Response(GameConfigOut(cfg).data)


@api_view(["GET"])
@permission_classes([AllowAny])
def curve_preview(request):
    query = CurveQueryIn(data=request.query_params)
    query.is_valid(raise_exception=True)
    cfg = services.get_config().to_curve()
    points = payout_table(query.validated_data["bet_amount"], cfg)
    return Response({
        "bet_amount": query.validated_data["bet_amount"],
        "max_depth": cfg.max_depth,
        "points": CurvePointOut(points, many=True).data,
    })


# =====================================================
# VAULT
# =====================================================

@api_view(["GET"])
@permission_classes([IsAuthenticated])
def vault_detail(request, vault_id):
    return Response(HouseVaultOut(services.get_vault(vault_id)).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def vault_toggle_lock(request, vault_id):
    vault = services.toggle_lock(vault_id, request.user)
    return Response(HouseVaultOut(vault).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def vault_deposit(request, vault_id):
    serializer = AmountIn(data=request.data)
    serializer.is_valid(raise_exception=True)
    vault = services.deposit(vault_id, request.user, serializer.validated_data["amount"])
    return Response(HouseVaultOut(vault).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def vault_withdraw(request, vault_id):
    serializer = AmountIn(data=request.data)
    serializer.is_valid(raise_exception=True)
    vault = services.withdraw(vault_id, request.user, serializer.validated_data["amount"])
    return Response(HouseVaultOut(vault).data)


@api_view(["GET"])
@permission_classes([IsAdminUser])
def vault_audit(request, vault_id):
    return Response(VaultAuditOut(services.audit_vault(vault_id)).data)


# =====================================================
# SESSIONS
# =====================================================

@api_view(["POST"])
@permission_classes([IsAuthenticated])
def open_session(request):
    serializer = OpenSessionIn(data=request.data)
    serializer.is_valid(raise_exception=True)

    session = services.open_session(
        request.user,
        serializer.validated_data["bet_amount"],
        vault_id=serializer.validated_data.get("vault_id"),
    )
    return Response(SessionOut(session).data, status=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def session_state(request, session_id):
    session = services.get_session(session_id)
    if session.player_id != request.user.pk and not request.user.is_staff:
        # Other players' sessions are invisible
        raise NotFound("Session not found")
    return Response(SessionOut(session).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def advance(request, session_id):
    session, outcome = services.advance_round(session_id, request.user)
    return Response(AdvanceOut({"round": outcome, "session": session}).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def settle(request, session_id):
    payout, session = services.settle(session_id, request.user)
    return Response(SettleOut({"payout_amount": payout, "session": session}).data)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def reveal(request, session_id):
    return Response(RevealOut(services.reveal_session(session_id, request.user)).data)
