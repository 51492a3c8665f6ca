"""SET_CLUSTER: record the MPC service identity the callbacks trust."""

from __future__ import annotations

import logging
from copy import deepcopy

from ..config import ED25519_PUBKEY_SIZE, X25519_PUBKEY_SIZE, ZERO_ADDRESS
from ..crypto.constant_time import constant_time_eq
from ..errors import ErrorCode, SpecError
from ..types import ClusterConfig, Instruction, InstructionType, ProgramState
from .common import bytes_field, int_field, payload_dict

logger = logging.getLogger(__name__)


def _cluster_from_payload(p: dict) -> ClusterConfig:
    return ClusterConfig(
        cluster_offset=int_field(p, "cluster_offset"),
        signer_pubkey=bytes_field(p, "signer_pubkey", ED25519_PUBKEY_SIZE),
        encryption_pubkey=bytes_field(p, "encryption_pubkey", X25519_PUBKEY_SIZE),
    )


def verify(state: ProgramState, ix: Instruction) -> None:
    if ix.ix_type != InstructionType.SET_CLUSTER:
        raise SpecError(ErrorCode.INVALID_TYPE, f"unsupported cluster ix type: {ix.ix_type}")
    if constant_time_eq(state.authority, ZERO_ADDRESS):
        raise SpecError(ErrorCode.UNAUTHORIZED, "program authority is not initialized")
    if not constant_time_eq(ix.signer, state.authority):
        raise SpecError(ErrorCode.UNAUTHORIZED, "only the program authority may set the cluster")
    _cluster_from_payload(payload_dict(ix))


def apply(state: ProgramState, ix: Instruction) -> ProgramState:
    next_state = deepcopy(state)
    cluster = _cluster_from_payload(ix.payload)
    if next_state.cluster is not None and next_state.cluster != cluster:
        logger.info(
            "replacing cluster %d with cluster %d",
            next_state.cluster.cluster_offset,
            cluster.cluster_offset,
        )
    next_state.cluster = cluster
    return next_state
