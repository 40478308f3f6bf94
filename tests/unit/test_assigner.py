"""
Publisher name assignment: pub0, pub1, ... without gaps or duplicates.
"""

from concurrent.futures import ThreadPoolExecutor

from moqrelay.runtime.assigner import PublisherIdentityAssigner, is_publisher_name


def test_names_are_sequential():
    assigner = PublisherIdentityAssigner()
    assert assigner.assign() == "pub0"
    assert assigner.assign() == "pub1"
    assert assigner.peek() == "pub2"
    assert assigner.next_index == 2


def test_concurrent_assignment_is_gapless_and_unique():
    assigner = PublisherIdentityAssigner()
    total = 2000

    with ThreadPoolExecutor(max_workers=16) as pool:
        names = list(pool.map(lambda _: assigner.assign(), range(total)))

    assert len(set(names)) == total
    assert set(names) == {f"pub{i}" for i in range(total)}
    assert assigner.next_index == total


def test_start_offset():
    assigner = PublisherIdentityAssigner(start=41)
    assert assigner.assign() == "pub41"


def test_is_publisher_name():
    assert is_publisher_name("pub0")
    assert is_publisher_name("pub12")
    assert not is_publisher_name("pub")
    assert not is_publisher_name("pub01")
    assert not is_publisher_name("relay")
    assert not is_publisher_name("pub1\n")
