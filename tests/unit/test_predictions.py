"""
Unit tests for prediction records and prediction sources.
"""

import json
from datetime import datetime

import pytest

from app.core.cache import PredictionCache
from app.core.database import DatabaseManager
from app.core.exceptions import PredictionSourceError
from app.models import AlgorithmPrediction
from app.services.backtesting.backtest_engine import BacktestConfig, BacktestEngine
from app.services.backtesting.predictions import (
    ALGORITHM_IDS,
    CachingPredictionSource,
    DatabasePredictionSource,
    InMemoryPredictionSource,
    PredictionQuery,
    PredictionRecord,
    PredictionSource,
    PredictionStatus,
    group_by_match,
    load_predictions_file,
    parse_timestamp,
)
from conftest import BASE_TIME, InMemoryRedis, make_prediction


class TestPredictionRecord:

    def test_from_dict(self):
        record = PredictionRecord.from_dict({
            "match_id": 101,
            "algorithm_id": ALGORITHM_IDS["SHARP_MONEY"],
            "prediction": "Lakers -3.5",
            "confidence": "67.5",
            "status": "WON",
            "predicted_at": "2024-03-01T18:00:00Z",
            "home_score": "110",
        })

        assert record.match_id == "101"
        assert record.confidence == 67.5
        assert record.status == PredictionStatus.WON
        assert record.predicted_at == BASE_TIME
        assert record.home_score == 110
        assert record.resolved_algorithm_name == "Sharp Money"

    def test_missing_status_is_pending(self):
        record = PredictionRecord.from_dict({"match_id": "m1", "predicted_at": "2024-03-01T18:00:00"})
        assert record.status == PredictionStatus.PENDING
        assert not record.is_settled

    def test_missing_match_id(self):
        with pytest.raises(ValueError):
            PredictionRecord.from_dict({"predicted_at": "2024-03-01T18:00:00"})

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            PredictionRecord.from_dict({"match_id": "m1", "status": "void", "predicted_at": "2024-03-01"})

    def test_settled_requires_prediction(self):
        assert make_prediction().is_settled
        assert not make_prediction(prediction=None).is_settled
        assert not make_prediction(status=PredictionStatus.PENDING).is_settled

    def test_title(self):
        assert make_prediction(match_title="Big Game").title == "Big Game"
        assert make_prediction(home_team="Lakers", away_team="Celtics").title == "Celtics @ Lakers"
        assert make_prediction(home_team=None, away_team=None).title == "Unknown"

    def test_to_dict(self):
        data = make_prediction().to_dict()
        assert data["status"] == "won"
        assert data["predicted_at"] == "2024-03-01T18:00:00"


class TestParseTimestamp:

    def test_offset_converted_to_utc(self):
        assert parse_timestamp("2024-03-01T20:00:00+02:00") == BASE_TIME

    def test_naive_passthrough(self):
        assert parse_timestamp(BASE_TIME) == BASE_TIME

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_timestamp(12345)


class TestPredictionQuery:

    def test_matches_settled_only(self):
        query = PredictionQuery()
        assert query.matches(make_prediction())
        assert not query.matches(make_prediction(status=PredictionStatus.PENDING))

    def test_date_bounds(self):
        query = PredictionQuery(start_date=datetime(2024, 3, 1), end_date=datetime(2024, 3, 1, 12))
        assert not query.matches(make_prediction())
        assert query.matches(make_prediction(predicted_at=datetime(2024, 3, 1, 9)))

    def test_league(self):
        assert PredictionQuery(league="all").matches(make_prediction(league="NFL"))
        assert not PredictionQuery(league="NBA").matches(make_prediction(league="NFL"))

    def test_cache_key_stable(self):
        assert PredictionQuery(league="NBA").cache_key() == PredictionQuery(league="NBA").cache_key()
        assert PredictionQuery(league="NBA").cache_key() != PredictionQuery(league="NFL").cache_key()


class TestGroupByMatch:

    def test_first_seen_order(self):
        records = [
            make_prediction(match_id="b"),
            make_prediction(match_id="a"),
            make_prediction(match_id="b", algorithm_id="x"),
        ]
        grouped = group_by_match(records)

        assert list(grouped) == ["b", "a"]
        assert [r.algorithm_id for r in grouped["b"]][1] == "x"


class TestInMemorySource:

    @pytest.mark.asyncio
    async def test_fetch_sorted_and_filtered(self):
        records = [
            make_prediction(match_id="late", predicted_at=datetime(2024, 3, 5)),
            make_prediction(match_id="early", predicted_at=datetime(2024, 3, 2)),
            make_prediction(match_id="pending", status=PredictionStatus.PENDING),
        ]
        fetched = await InMemoryPredictionSource(records).fetch(PredictionQuery())
        assert [r.match_id for r in fetched] == ["early", "late"]


class TestLoadPredictionsFile:

    def test_json(self, tmp_path):
        path = tmp_path / "predictions.json"
        path.write_text(json.dumps([
            {
                "match_id": "m1",
                "algorithm_id": ALGORITHM_IDS["ML_POWER_INDEX"],
                "prediction": "Home",
                "confidence": 64,
                "status": "won",
                "predicted_at": "2024-03-01T18:00:00Z",
                "league": "NBA",
                "home_score": None,
            },
            {
                "match_id": "m2",
                "prediction": "Away",
                "confidence": 55.5,
                "status": "lost",
                "predicted_at": "2024-03-02T18:00:00Z",
            },
        ]))

        records = load_predictions_file(path)
        assert len(records) == 2
        assert records[0].confidence == 64.0
        assert records[0].home_score is None
        assert records[1].status == PredictionStatus.LOST
        assert records[1].league is None

    def test_csv(self, tmp_path):
        path = tmp_path / "predictions.csv"
        path.write_text(
            "match_id,algorithm_id,prediction,confidence,status,predicted_at,league\n"
            "m1,a1,Home,61.5,won,2024-03-01T18:00:00,NBA\n"
            "m1,a2,Away,,lost,2024-03-01T18:00:00,\n"
        )

        records = load_predictions_file(path)
        assert records[0].confidence == 61.5
        assert records[1].confidence == 0.0
        assert records[1].league is None

    def test_unsupported_type(self, tmp_path):
        path = tmp_path / "predictions.txt"
        path.write_text("")
        with pytest.raises(PredictionSourceError):
            load_predictions_file(path)

    def test_bad_row(self, tmp_path):
        path = tmp_path / "predictions.json"
        path.write_text(json.dumps([{"match_id": "m1", "status": "won"}]))
        with pytest.raises(PredictionSourceError):
            load_predictions_file(path)


class CountingSource(PredictionSource):
    name = "counting"

    def __init__(self, records):
        self.records = records
        self.calls = 0

    async def fetch(self, query):
        self.calls += 1
        return [r for r in self.records if query.matches(r)]


class TestCachingSource:

    @pytest.mark.asyncio
    async def test_repeated_query_hits_cache(self):
        inner = CountingSource([make_prediction(home_score=110, away_score=102, algorithm_name="ML Power Index")])
        source = CachingPredictionSource(inner, PredictionCache(InMemoryRedis(), ttl=60))

        first = await source.fetch(PredictionQuery(league="NBA"))
        second = await source.fetch(PredictionQuery(league="NBA"))

        assert inner.calls == 1
        assert first == second

    @pytest.mark.asyncio
    async def test_different_query_misses(self):
        inner = CountingSource([make_prediction()])
        source = CachingPredictionSource(inner, PredictionCache(InMemoryRedis(), ttl=60))

        await source.fetch(PredictionQuery(league="NBA"))
        await source.fetch(PredictionQuery(league="NFL"))
        assert inner.calls == 2

    @pytest.mark.asyncio
    async def test_default_config_hits_cache(self):
        inner = CountingSource([make_prediction()])
        engine = BacktestEngine(CachingPredictionSource(inner, PredictionCache(InMemoryRedis(), ttl=60)))

        first = await engine.fetch(BacktestConfig(days=3650))
        second = await engine.fetch(BacktestConfig(days=3650))

        assert inner.calls == 1
        assert len(first) == len(second) == 1

    @pytest.mark.asyncio
    async def test_redis_outage_falls_through_to_source(self):
        inner = CountingSource([make_prediction()])
        source = CachingPredictionSource(inner, PredictionCache(InMemoryRedis(fail=True), ttl=60))

        records = await source.fetch(PredictionQuery())
        await source.fetch(PredictionQuery())

        assert len(records) == 1
        assert inner.calls == 2


class TestDatabaseSource:

    @pytest.mark.asyncio
    async def test_fetch_from_sqlite(self, tmp_path):
        database = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'predictions.db'}")
        await database.create_all()
        try:
            async with database.session() as session:
                session.add_all([
                    AlgorithmPrediction(
                        match_id="m2", algorithm_id="a1", prediction="Away", confidence=58.0,
                        status="lost", predicted_at=datetime(2024, 3, 2, 18), league="NBA",
                    ),
                    AlgorithmPrediction(
                        match_id="m1", algorithm_id="a1", prediction="Home", confidence=62.0,
                        status="won", predicted_at=datetime(2024, 3, 1, 18), league="NBA",
                        home_team="Lakers", away_team="Celtics",
                    ),
                    AlgorithmPrediction(
                        match_id="m3", algorithm_id="a1", prediction="Home", confidence=70.0,
                        status="pending", predicted_at=datetime(2024, 3, 3, 18), league="NBA",
                    ),
                    AlgorithmPrediction(
                        match_id="m4", algorithm_id="a1", prediction="Over", confidence=66.0,
                        status="won", predicted_at=datetime(2024, 3, 1, 20), league="NFL",
                    ),
                ])

            source = DatabasePredictionSource(database)
            records = await source.fetch(PredictionQuery(league="NBA"))

            assert [r.match_id for r in records] == ["m1", "m2"]
            assert records[0].title == "Celtics @ Lakers"
            assert records[1].status == PredictionStatus.LOST

            windowed = await source.fetch(PredictionQuery(start_date=datetime(2024, 3, 1, 19)))
            assert [r.match_id for r in windowed] == ["m4", "m2"]
        finally:
            await database.close()

    @pytest.mark.asyncio
    async def test_missing_table_raises_source_error(self, tmp_path):
        database = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        try:
            with pytest.raises(PredictionSourceError) as exc_info:
                await DatabasePredictionSource(database).fetch(PredictionQuery())
            assert exc_info.value.source == "database"
        finally:
            await database.close()
