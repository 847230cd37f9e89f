"""Tests for the machine — the coordinator and dispatch loop.

These tests drive the whole memory system the way the shell does:
allocate pages, fork, switch, read and write, and check that the
frame table always agrees with the page tables.
"""

import random

import pytest

from py_vm.config import MachineConfig
from py_vm.logging import EventKind, LogLevel
from py_vm.machine import INIT_PID, Machine, MachineState
from py_vm.memory.allocator import OutOfMemoryError
from py_vm.memory.faults import FaultResolution, SegmentationFaultError
from py_vm.memory.pagetable import Access

SMALL = MachineConfig(outer_bits=2, inner_bits=2, total_frames=4, page_size=64)


def _booted(config: MachineConfig = SMALL) -> Machine:
    """Create and boot a machine."""
    machine = Machine(config=config)
    machine.boot()
    return machine


class TestLifecycle:
    """Verify boot and shutdown."""

    def test_new_machine_is_shut_down(self) -> None:
        """A new machine should be in SHUTDOWN."""
        assert Machine().state is MachineState.SHUTDOWN

    def test_boot_starts_init(self) -> None:
        """Booting should run the init process with no pages."""
        machine = _booted()
        assert machine.state is MachineState.RUNNING
        assert machine.current.pid == INIT_PID
        assert machine.mappings() == {}
        assert machine.frames.free_frames == SMALL.total_frames

    def test_boot_twice_raises(self) -> None:
        """Booting a running machine is an error."""
        machine = _booted()
        with pytest.raises(RuntimeError, match="Cannot boot"):
            machine.boot()

    def test_operations_require_running(self) -> None:
        """Operations on a halted machine should raise RuntimeError."""
        machine = _booted()
        machine.shutdown()
        assert machine.state is MachineState.SHUTDOWN
        with pytest.raises(RuntimeError, match="not running"):
            machine.allocate_frame(0, Access.WRITE)

    def test_reboot_starts_fresh(self) -> None:
        """A reboot should discard every process and mapping."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        machine.switch_or_fork(1)
        machine.shutdown()
        machine.boot()
        assert [p.pid for p in machine.processes()] == [INIT_PID]
        assert machine.frames.free_frames == SMALL.total_frames


class TestScenarios:
    """The reference scenarios on a 4-frame machine."""

    def test_a_first_allocation(self) -> None:
        """Allocating VPN 0 for write should use frame 0."""
        machine = _booted()
        assert machine.allocate_frame(0, Access.WRITE) == 0
        assert machine.frame_counts() == {0: 1, 1: 0, 2: 0, 3: 0}

    def test_b_fork_shares_frame(self) -> None:
        """Fork should map VPN 0 to frame 0 in both, read-only COW, count 2."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        assert machine.switch_or_fork(1) == 1
        for pid in (0, 1):
            entry = machine.mappings(pid)[0]
            assert entry.pfn == 0
            assert not entry.writable
            assert entry.cow
        assert machine.frames.count(0) == 2

    def test_c_child_write_breaks_cow(self) -> None:
        """A child write should get frame 1 and leave the parent writable on frame 0."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        machine.switch_or_fork(1)

        assert machine.resolve_fault(0, Access.WRITE) is FaultResolution.COPIED

        child = machine.mappings(1)[0]
        parent = machine.mappings(0)[0]
        assert child.pfn == 1
        assert child.writable
        assert parent.pfn == 0
        assert parent.writable
        assert machine.frames.count(0) == 1
        assert machine.frames.count(1) == 1

    def test_d_read_unmapped_segfaults(self) -> None:
        """Reading an unmapped VPN should be a segmentation fault."""
        machine = _booted()
        with pytest.raises(SegmentationFaultError):
            machine.resolve_fault(3, Access.READ)

    def test_e_out_of_memory(self) -> None:
        """Allocating with every frame in use should raise OutOfMemoryError."""
        machine = _booted()
        for vpn in range(SMALL.total_frames):
            machine.allocate_frame(vpn, Access.WRITE)
        with pytest.raises(OutOfMemoryError):
            machine.allocate_frame(8, Access.WRITE)


class TestDispatch:
    """Verify access(), read() and write() through the fault path."""

    def test_write_then_read(self) -> None:
        """Data written to a page should be readable back."""
        machine = _booted()
        machine.allocate_frame(2, Access.READ_WRITE)
        machine.write(2, b"hello", offset=4)
        assert machine.read(2, offset=4, size=5) == b"hello"

    def test_fresh_page_is_zeroed(self) -> None:
        """A reused frame should not leak the previous owner's data."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        machine.write(0, b"secret")
        machine.deallocate(0)
        machine.allocate_frame(1, Access.READ)
        assert machine.read(1, size=6) == bytes(6)

    def test_hit_does_not_fault(self) -> None:
        """An access that translates cleanly should not reach the resolver."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        machine.write(0, b"x")
        machine.read(0)
        assert machine.fault_stats == {}

    def test_write_read_only_segfaults(self) -> None:
        """Writing a read-only page should raise and be counted."""
        machine = _booted()
        machine.allocate_frame(0, Access.READ)
        with pytest.raises(SegmentationFaultError):
            machine.write(0, b"x")
        assert machine.fault_stats == {"segfault": 1}

    def test_fork_isolation(self) -> None:
        """A child's write must not change what the parent sees."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        machine.write(0, b"parent")
        machine.switch_or_fork(1)

        assert machine.read(0, size=6) == b"parent"
        machine.write(0, b"child!")
        assert machine.read(0, size=6) == b"child!"

        machine.switch_or_fork(0)
        assert machine.read(0, size=6) == b"parent"

    def test_cow_monotonicity(self) -> None:
        """After a COW break the remaining sharer writes without faulting."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        machine.switch_or_fork(1)
        machine.write(0, b"c")
        machine.switch_or_fork(0)
        machine.write(0, b"p")
        machine.write(0, b"q")
        assert machine.fault_stats == {"copied": 1}

    def test_free_leaves_sole_sharer_writable(self) -> None:
        """Freeing one side of a shared COW page should promote the other."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        machine.switch_or_fork(1)
        machine.deallocate(0)
        parent = machine.mappings(0)[0]
        assert parent.writable
        assert not parent.cow
        assert machine.frames.count(0) == 1

    def test_cow_break_out_of_memory(self) -> None:
        """A COW write with no free frame should raise OutOfMemoryError."""
        machine = _booted(MachineConfig(outer_bits=2, inner_bits=2, total_frames=1, page_size=64))
        machine.allocate_frame(0, Access.WRITE)
        machine.switch_or_fork(1)
        with pytest.raises(OutOfMemoryError):
            machine.write(0, b"x")
        assert machine.fault_stats == {"oom": 1}
        assert machine.check_consistency() == []


class TestInvariants:
    """Verify conservation and placement over random operation sequences."""

    @pytest.mark.parametrize("seed", range(5))
    def test_random_workload_stays_consistent(self, seed: int) -> None:
        """Share counts, COW flags and frame placement hold after every step."""
        config = MachineConfig(outer_bits=2, inner_bits=3, total_frames=8, page_size=16)
        machine = _booted(config)
        rng = random.Random(seed)
        pids = [0]

        for _ in range(300):
            op = rng.choice(["alloc", "free", "read", "write", "switch"])
            vpn = rng.randrange(config.num_pages)
            try:
                if op == "alloc":
                    expected = machine.frames.lowest_free()
                    if machine.translate(vpn) is None and expected is not None:
                        access = rng.choice([Access.READ, Access.WRITE, Access.READ_WRITE])
                        assert machine.allocate_frame(vpn, access) == expected
                elif op == "free":
                    if machine.translate(vpn) is not None:
                        machine.deallocate(vpn)
                elif op == "read":
                    machine.read(vpn, size=1)
                elif op == "write":
                    machine.write(vpn, bytes([rng.randrange(256)]))
                else:
                    pid = rng.randrange(4)
                    machine.switch_or_fork(pid)
                    if pid not in pids:
                        pids.append(pid)
            except (SegmentationFaultError, OutOfMemoryError):
                pass

            assert machine.check_consistency() == []
            total_entries = sum(len(p.page_table) for p in machine.processes())
            assert sum(machine.frame_counts().values()) == total_entries

        assert sorted(p.pid for p in machine.processes()) == sorted(pids)


class TestReporting:
    """Verify reporting helpers and the event log."""

    def test_process_lookup(self) -> None:
        """process() should find current and ready processes."""
        machine = _booted()
        machine.switch_or_fork(4)
        assert machine.process(0).pid == 0
        assert machine.process(4) is machine.current
        with pytest.raises(ValueError, match="not found"):
            machine.process(9)

    def test_log_records_events(self) -> None:
        """Allocation, fork and COW breaks should be logged."""
        machine = _booted()
        machine.allocate_frame(0, Access.WRITE)
        machine.switch_or_fork(1)
        machine.write(0, b"x")
        sources = [event.kind for event in machine.logger.entries]
        assert "boot" in sources
        assert "alloc" in sources
        assert "fork" in sources
        assert "fault" in sources
        assert any("copied to frame 1" in line for line in machine.dmesg())

    def test_segfault_logged_as_warning(self) -> None:
        """Segfaults should be logged at WARNING with the faulting PID."""
        machine = _booted()
        machine.switch_or_fork(2)
        with pytest.raises(SegmentationFaultError):
            machine.read(0)
        warnings = machine.logger.filter(min_level=LogLevel.WARNING)
        assert len(warnings) == 1
        assert warnings[0].pid == 2

    def test_switch_logged(self) -> None:
        """A switch between existing processes should be logged."""
        machine = _booted()
        machine.switch_or_fork(1)
        machine.switch_or_fork(0)
        assert machine.logger.filter(kind=EventKind.SWITCH)

    def test_events_carry_vpn(self) -> None:
        """Page-level events should be findable by their VPN."""
        machine = _booted()
        machine.allocate_frame(3, Access.READ_WRITE)
        machine.allocate_frame(4, Access.READ_WRITE)
        machine.deallocate(3)
        kinds = [event.kind for event in machine.logger.filter(vpn=3)]
        assert kinds == [EventKind.ALLOC, EventKind.FREE]
