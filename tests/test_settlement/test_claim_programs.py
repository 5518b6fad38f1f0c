"""Tests for ClaimProgram validation and settings presets."""

from decimal import Decimal

import pytest

from config.settings import Settings
from src.settlement.programs import (
    AGENT_PROGRAM,
    CLAW_PROGRAM,
    ClaimProgram,
    program_from_settings,
)
from src.settlement.types import DistributionType


class TestClaimProgram:
    def test_defaults(self):
        program = ClaimProgram(name="claw", creator_share_pct=Decimal("0.3"))
        assert program.min_claim_sol == Decimal("0.01")
        assert program.cooldown_sec == 3600
        assert program.lock_duration_sec == 60
        assert program.payment_margin_sec == 10
        assert program.payment_timeout_sec == 50
        assert program.reserve_buffer_sol == Decimal("0.01")
        assert program.max_single_claim_sol is None
        assert set(program.distribution_types) == {
            DistributionType.CREATOR_CLAIM,
            DistributionType.CREATOR,
        }

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": ""},
            {"creator_share_pct": Decimal("0")},
            {"creator_share_pct": Decimal("1.5")},
            {"min_claim_sol": Decimal("-0.01")},
            {"cooldown_sec": -1},
            {"lock_duration_sec": 0},
            {"payment_margin_sec": -1},
            {"lock_duration_sec": 10, "payment_margin_sec": 10},
            {"max_single_claim_sol": Decimal("0")},
        ],
    )
    def test_rejects_bad_values(self, overrides):
        params = {"name": "claw", "creator_share_pct": Decimal("0.3"), **overrides}
        with pytest.raises(ValueError):
            ClaimProgram(**params)


class TestProgramFromSettings:
    def test_agent_and_claw_shares(self):
        cfg = Settings(agent_creator_share_pct=0.8, claw_creator_share_pct=0.3)
        assert program_from_settings(AGENT_PROGRAM, cfg).creator_share_pct == Decimal("0.8")
        assert program_from_settings(CLAW_PROGRAM, cfg).creator_share_pct == Decimal("0.3")

    def test_claim_limits_from_settings(self):
        cfg = Settings(
            claim_min_sol=0.05,
            claim_cooldown_sec=600,
            claim_lock_sec=30,
            claim_payment_margin_sec=5,
            claim_reserve_buffer_sol=0.02,
            claim_max_single_sol=2.5,
        )
        program = program_from_settings(CLAW_PROGRAM, cfg)
        assert program.min_claim_sol == Decimal("0.05")
        assert program.cooldown_sec == 600
        assert program.lock_duration_sec == 30
        assert program.payment_timeout_sec == 25
        assert program.reserve_buffer_sol == Decimal("0.02")
        assert program.max_single_claim_sol == Decimal("2.5")

    def test_no_ceiling_by_default(self):
        program = program_from_settings(AGENT_PROGRAM, Settings(claim_max_single_sol=None))
        assert program.max_single_claim_sol is None

    def test_unknown_program(self):
        with pytest.raises(ValueError, match="Unknown claim program"):
            program_from_settings("nope", Settings())
