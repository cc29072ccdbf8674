import threading
from pathlib import Path

from jxlbatch.domain.models import ERROR_OUTCOMES, OutcomeCode
from jxlbatch.pipeline.stats import StatisticsAggregator


def test_new_aggregator_is_empty():
    stats = StatisticsAggregator()
    snapshot = stats.snapshot()
    assert not stats.is_valid()
    assert snapshot.count() == 0
    assert snapshot.average_throughput == 0.0
    assert snapshot.delta_percent is None


def test_delta_percent_for_twenty_percent_saving():
    stats = StatisticsAggregator()
    stats.add_input_bytes(1_000_000)
    stats.add_output_bytes(800_000)
    assert stats.snapshot().delta_percent == -20.0


def test_byte_totals_alone_do_not_make_data_valid():
    stats = StatisticsAggregator()
    stats.add_input_bytes(10)
    stats.add_throughput(5.0)
    assert not stats.is_valid()
    stats.add_file(Path("a.png"), OutcomeCode.OK)
    assert stats.is_valid()


def test_throughput_average_over_all_samples():
    stats = StatisticsAggregator()
    stats.add_throughput(30.0, samples=2)   # worker A: 10 + 20
    stats.add_throughput(30.0)              # worker B: 30
    stats.add_throughput(99.0, samples=0)   # ignored
    assert stats.snapshot().average_throughput == 20.0


def test_files_and_counts_by_code_and_union():
    stats = StatisticsAggregator()
    stats.add_file(Path("a.png"), OutcomeCode.OK)
    stats.add_file(Path("b.png"), OutcomeCode.ENCODE_ERR_SKIP)
    stats.add_file(Path("c.png"), OutcomeCode.OUT_FOLDER_ERR)
    stats.add_file(Path("d.png"), OutcomeCode.SKIPPED_ALREADY_EXIST)

    assert stats.count() == 4
    assert stats.count(OutcomeCode.OK) == 1
    assert stats.count(ERROR_OUTCOMES) == 2
    assert stats.files(OutcomeCode.OUT_FOLDER_ERR | OutcomeCode.ENCODE_ERR_SKIP) == [Path("b.png"), Path("c.png")]


def test_reset_clears_everything():
    stats = StatisticsAggregator()
    stats.add_input_bytes(100)
    stats.add_output_bytes(50)
    stats.add_throughput(3.0)
    stats.add_file(Path("a.png"), OutcomeCode.OK)

    stats.reset()

    snapshot = stats.snapshot()
    assert not stats.is_valid()
    assert snapshot.total_input_bytes == 0
    assert snapshot.total_output_bytes == 0
    assert snapshot.throughput_samples == 0
    assert snapshot.entries == []


def test_snapshot_is_a_copy():
    stats = StatisticsAggregator()
    stats.add_file(Path("a.png"), OutcomeCode.OK)
    snapshot = stats.snapshot()
    stats.add_file(Path("b.png"), OutcomeCode.OK)
    assert snapshot.count() == 1


def test_concurrent_writers_lose_nothing():
    stats = StatisticsAggregator()

    def writer(worker):
        for i in range(200):
            stats.add_file(Path(f"w{worker}_{i}.png"), OutcomeCode.OK)
            stats.add_input_bytes(1)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snapshot = stats.snapshot()
    assert snapshot.count() == 800
    assert snapshot.total_input_bytes == 800
