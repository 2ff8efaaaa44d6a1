"""Tests for the serial and thread pool schedulers."""

import gc
import threading

import numpy as np
import pytest

from clear_deep_network import Dense, Network, SerialScheduler, ThreadPoolScheduler


class TestSerialScheduler:
    """Test inline execution."""

    def test_runs_in_order(self):
        calls = []
        results = SerialScheduler().run_all([lambda i=i: calls.append(i) or i * 2 for i in range(4)])
        assert calls == [0, 1, 2, 3]
        assert results == [0, 2, 4, 6]

    def test_exception_propagates(self):
        def fail():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            SerialScheduler().run_all([fail])


class TestThreadPoolScheduler:
    """Test the worker pool join barrier."""

    def test_results_in_task_order(self):
        with ThreadPoolScheduler(max_workers=4) as scheduler:
            assert scheduler.run_all([lambda i=i: i * i for i in range(10)]) == [i * i for i in range(10)]

    def test_tasks_run_on_workers(self):
        names = []
        with ThreadPoolScheduler(max_workers=2) as scheduler:
            scheduler.run_all([lambda: names.append(threading.current_thread().name) for _ in range(4)])
        assert len(names) == 4
        assert all(name.startswith("channel") for name in names)

    def test_first_error_raised_after_all_tasks_finish(self):
        finished = threading.Event()

        def fail():
            raise ValueError("first")

        def slow():
            threading.Event().wait(0.05)
            finished.set()

        def fail_later():
            raise RuntimeError("second")

        with ThreadPoolScheduler(max_workers=3) as scheduler:
            with pytest.raises(ValueError, match="first"):
                scheduler.run_all([fail, slow, fail_later])
            assert finished.is_set()

    def test_close_is_idempotent_and_pool_restarts(self):
        scheduler = ThreadPoolScheduler(max_workers=2)
        assert scheduler.run_all([lambda: 1, lambda: 2]) == [1, 2]
        scheduler.close()
        scheduler.close()
        assert scheduler.run_all([lambda: 3, lambda: 4]) == [3, 4]
        scheduler.close()


class TestNetworkScheduling:
    """A threaded network computes the same numbers as a serial one."""

    def build(self, scheduler):
        np.random.seed(42)
        network = Network(scheduler=scheduler)
        network.add_input("x", [5])
        network.add_layer()
        for i in range(4):
            network.add_channel(0, f"h{i}", ["x"], [Dense('tanh', 3)])
        network.add_layer()
        network.add_channel(1, "out", [f"h{i}" for i in range(4)], [Dense('sigmoid', 2)])
        network.validate()
        network.set_input_values("x", np.linspace(-1.0, 1.0, 5))
        return network

    def test_threaded_matches_serial(self):
        with self.build(SerialScheduler()) as serial, self.build(ThreadPoolScheduler(max_workers=4)) as threaded:
            for network in (serial, threaded):
                network.start_batch()
                network.feed_forward()
                network.back_propagate(1)
                network.update_weights(0.1)
            np.testing.assert_allclose(threaded.feed_forward(), serial.feed_forward(), rtol=1e-12)

    def test_default_scheduler_is_thread_pool(self):
        with Network() as network:
            assert isinstance(network.scheduler, ThreadPoolScheduler)

    def test_default_pool_shut_down_when_network_collected(self):
        network = Network(max_workers=2)
        network.add_input("x", [2])
        network.add_layer()
        network.add_channel(0, "a", ["x"], [Dense('tanh', 1)])
        network.add_channel(0, "b", ["x"], [Dense('tanh', 1)])
        network.feed_forward()
        scheduler = network.scheduler
        assert scheduler._executor is not None

        del network
        gc.collect()
        assert scheduler._executor is None

    def test_caller_scheduler_not_tied_to_network_lifetime(self):
        with ThreadPoolScheduler(max_workers=2) as scheduler:
            network = Network(scheduler=scheduler)
            scheduler.run_all([lambda: 1, lambda: 2])
            del network
            gc.collect()
            assert scheduler._executor is not None
