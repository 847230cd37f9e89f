"""Tests for process switching and copy-on-write fork.

``switch_or_fork(pid)`` switches to a ready process with that PID, or
forks the current process into a new child with that PID.  Fork shares
every frame: writable pages become read-only COW in *both* parent and
child; read-only pages are shared as they are.
"""

from py_vm.memory.allocator import FrameAllocator
from py_vm.memory.frames import FrameTable
from py_vm.memory.pagetable import Access, PageTable
from py_vm.process.manager import ProcessManager
from py_vm.process.pcb import Process, ProcessState

TOTAL_FRAMES = 8


def _manager() -> tuple[ProcessManager, FrameAllocator, FrameTable]:
    """Create a process manager whose init process has PID 0."""
    frames = FrameTable(total_frames=TOTAL_FRAMES)
    init = Process(pid=0, page_table=PageTable(outer_bits=2, inner_bits=2))
    return ProcessManager(frames=frames, init=init), FrameAllocator(frames), frames


class TestSwitch:
    """Verify switching between existing processes."""

    def test_init_is_running(self) -> None:
        """The init process should be current and RUNNING."""
        manager, _allocator, _frames = _manager()
        assert manager.current.pid == 0
        assert manager.current.state is ProcessState.RUNNING
        assert len(manager.ready) == 0

    def test_switch_to_current_is_noop(self) -> None:
        """Asking for the current PID should change nothing."""
        manager, _allocator, _frames = _manager()
        assert manager.switch_or_fork(0) == 0
        assert len(manager.ready) == 0

    def test_switch_back_to_parent(self) -> None:
        """Switching to a queued PID should make it current."""
        manager, _allocator, _frames = _manager()
        init = manager.current
        manager.switch_or_fork(1)
        child = manager.current

        assert manager.switch_or_fork(0) == 0
        assert manager.current is init
        assert manager.page_table is init.page_table
        assert manager.ready.find_by_pid(1) is child
        assert manager.ready.find_by_pid(0) is None
        assert child.state is ProcessState.READY

    def test_switch_does_not_touch_frames(self) -> None:
        """A plain switch should not change any share count or entry."""
        manager, allocator, frames = _manager()
        allocator.allocate_frame(manager.page_table, 0, Access.WRITE)
        manager.switch_or_fork(1)
        before = frames.snapshot()
        mappings = [table.mappings() for table in manager.page_tables()]
        manager.switch_or_fork(0)
        manager.switch_or_fork(1)
        assert frames.snapshot() == before
        assert [table.mappings() for table in manager.page_tables()] == mappings

    def test_switched_out_process_goes_to_back(self) -> None:
        """The previous current process should join the back of the queue."""
        manager, _allocator, _frames = _manager()
        manager.switch_or_fork(1)
        manager.switch_or_fork(2)
        manager.switch_or_fork(0)
        assert [p.pid for p in manager.ready] == [1, 2]


class TestFork:
    """Verify COW duplication of the address space."""

    def test_fork_assigns_requested_pid(self) -> None:
        """The child should get the requested PID and record its parent."""
        manager, _allocator, _frames = _manager()
        assert manager.switch_or_fork(7) == 7
        assert manager.current.pid == 7
        assert manager.current.parent_pid == 0
        assert manager.ready.find_by_pid(0) is not None

    def test_fork_marks_writable_pages_cow_on_both_sides(self) -> None:
        """A writable page should become read-only COW in parent and child."""
        manager, allocator, frames = _manager()
        parent_table = manager.page_table
        allocator.allocate_frame(parent_table, 0, Access.WRITE)

        manager.switch_or_fork(1)

        for table in (parent_table, manager.page_table):
            entry = table.translate(0)
            assert entry is not None
            assert entry.pfn == 0
            assert not entry.writable
            assert entry.cow
        assert frames.count(0) == 2

    def test_fork_keeps_read_only_pages_plain(self) -> None:
        """A read-only page should be shared without becoming COW."""
        manager, allocator, frames = _manager()
        parent_table = manager.page_table
        allocator.allocate_frame(parent_table, 5, Access.READ)

        manager.switch_or_fork(1)

        for table in (parent_table, manager.page_table):
            entry = table.translate(5)
            assert entry is not None
            assert not entry.writable
            assert not entry.cow
        assert frames.count(0) == 2

    def test_fork_gives_child_its_own_page_table(self) -> None:
        """Parent and child must not share page table objects."""
        manager, allocator, _frames = _manager()
        parent_table = manager.page_table
        allocator.allocate_frame(parent_table, 9, Access.WRITE)
        manager.switch_or_fork(1)
        child_table = manager.page_table
        assert child_table is not parent_table
        assert child_table.directory(2) is not parent_table.directory(2)
        assert child_table.entry(9) is not parent_table.entry(9)

    def test_fork_mirrors_every_mapping(self) -> None:
        """Every valid VPN in the parent should be valid in the child with the same PFN."""
        manager, allocator, _frames = _manager()
        parent_table = manager.page_table
        for vpn in (0, 3, 6, 15):
            allocator.allocate_frame(parent_table, vpn, Access.WRITE)
        manager.switch_or_fork(1)
        assert manager.page_table.mappings() == parent_table.mappings()

    def test_fork_skips_empty_directories(self) -> None:
        """Outer slots with no directory in the parent stay empty in the child."""
        manager, allocator, _frames = _manager()
        allocator.allocate_frame(manager.page_table, 4, Access.WRITE)
        manager.switch_or_fork(1)
        populated = [outer for outer, _ in manager.page_table.populated()]
        assert populated == [1]

    def test_second_fork_adds_third_sharer(self) -> None:
        """Forking a child again should bump the count to 3 and keep COW."""
        manager, allocator, frames = _manager()
        allocator.allocate_frame(manager.page_table, 0, Access.WRITE)
        manager.switch_or_fork(1)
        manager.switch_or_fork(2)
        assert frames.count(0) == 3
        for table in manager.page_tables():
            entry = table.translate(0)
            assert entry is not None
            assert entry.cow
            assert not entry.writable

    def test_page_tables_lists_every_process(self) -> None:
        """page_tables should cover the current process and the ready queue."""
        manager, _allocator, _frames = _manager()
        manager.switch_or_fork(1)
        manager.switch_or_fork(2)
        assert len(list(manager.page_tables())) == 3
        assert [p.pid for p in manager.processes()] == [2, 0, 1]
