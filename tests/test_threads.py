"""Tests for CPU thread budgeting."""

import logging

import pytest

from planner.models import CPUDescriptor, UseCase
from planner.threads import optimal_threads, recommendation, validate_thread_count

HYBRID = CPUDescriptor(core_count=12, efficiency_core_count=4, thread_count=16)  # 8P + 4E
SERVER_SOCKET = CPUDescriptor(core_count=32, thread_count=64)


class TestOptimalThreads:
    def test_excludes_efficiency_cores(self):
        assert optimal_threads([HYBRID]) == 8

    def test_sums_sockets(self):
        assert optimal_threads([SERVER_SOCKET, SERVER_SOCKET]) == 64

    def test_empty(self):
        assert optimal_threads([]) == 0

    @pytest.mark.parametrize(
        "cores, efficiency, expected",
        [
            (8, 0, 8),
            (8, 8, 0),
            (8, 12, 0),  # more E-cores than cores: floored at zero
            (8, -4, 8),  # negative count is clamped, not added
        ],
    )
    def test_per_entry_floor_and_clamp(self, cores, efficiency, expected):
        cpu = CPUDescriptor(core_count=cores, efficiency_core_count=efficiency)
        assert optimal_threads([cpu]) == expected

    def test_mixed_entries(self):
        cpus = [
            CPUDescriptor(core_count=4, efficiency_core_count=6),
            CPUDescriptor(core_count=10, efficiency_core_count=2),
        ]
        assert optimal_threads(cpus) == 0 + 8


class TestValidateThreadCount:
    def test_within_budget_unchanged(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert validate_thread_count(4, [HYBRID]) == 4
        assert caplog.records == []

    def test_capped_to_optimal_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert validate_thread_count(32, [HYBRID]) == 8
        assert "32" in caplog.text
        assert "8" in caplog.text

    def test_capped_by_threads_per_core(self):
        cpu = CPUDescriptor(core_count=4)
        assert validate_thread_count(100, [cpu], max_threads_per_core=1) == 4

    def test_never_below_one(self):
        assert validate_thread_count(0, [HYBRID]) == 1
        assert validate_thread_count(-3, [HYBRID]) == 1
        assert validate_thread_count(8, []) == 1

    def test_raised_to_one_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert validate_thread_count(0, [HYBRID]) == 1
        assert "Requested 0 threads" in caplog.text


class TestRecommendation:
    def test_inference(self):
        rec = recommendation([HYBRID], UseCase.INFERENCE)
        assert (rec.minimum, rec.recommended, rec.maximum) == (1, 8, 8)
        assert "performance" in rec.reasoning

    def test_training_oversubscribes(self):
        rec = recommendation([HYBRID], "training")
        assert rec.recommended == 12  # 1.5 × 8, within 16 logical threads
        assert rec.maximum == 16

    def test_training_limited_by_logical_threads(self):
        cpu = CPUDescriptor(core_count=8)  # no SMT info: 8 logical threads
        rec = recommendation([cpu], UseCase.TRAINING)
        assert rec.recommended == 8
        assert rec.maximum == 8

    def test_serving_leaves_headroom(self):
        rec = recommendation([HYBRID], UseCase.SERVING)
        assert rec.recommended == 4
        assert rec.maximum == 8
        assert rec.recommended <= optimal_threads([HYBRID])

    def test_default_is_inference(self):
        assert recommendation([SERVER_SOCKET]).recommended == 32

    def test_no_cpus_still_recommends_one(self):
        rec = recommendation([], UseCase.SERVING)
        assert rec.recommended == 1
        assert rec.maximum >= rec.recommended

    def test_unknown_use_case(self):
        with pytest.raises(ValueError):
            recommendation([HYBRID], "mining")
