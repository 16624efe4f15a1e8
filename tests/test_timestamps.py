from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from camrelay.timestamps import (
    EPOCH,
    ContainerKind,
    derive_timestamp,
    epoch_or_timestamp,
    format_timestamp,
    kind_for_path,
)

CST = timezone(timedelta(hours=8))


def test_flv_path_yields_capture_time():
    value = derive_timestamp("live/hk/2021/09/24/143046.flv", ContainerKind.FLV, CST)
    assert value == datetime(2021, 9, 24, 14, 30, 46, tzinfo=CST)


def test_mp4_path_yields_capture_time():
    value = derive_timestamp("live/hw/2021-09-27/18-07-25.mp4", ContainerKind.MP4, CST)
    assert value == datetime(2021, 9, 27, 18, 7, 25, tzinfo=CST)


def test_default_zone_is_local():
    value = derive_timestamp("hk/2021/09/24/143046.flv", ContainerKind.FLV)
    assert value == datetime(2021, 9, 24, 14, 30, 46).astimezone()
    assert value.tzinfo is not None


def test_prefix_and_separators_are_tolerated():
    expected = datetime(2021, 9, 24, 14, 30, 46, tzinfo=CST)
    assert derive_timestamp("2021/09/24/143046.flv", ContainerKind.FLV, CST) == expected
    assert derive_timestamp("/srv/a/b/c/hk/2021/09/24/143046.flv", ContainerKind.FLV, CST) == expected
    assert derive_timestamp("hk\\2021\\09\\24\\143046.FLV", ContainerKind.FLV, CST) == expected


@pytest.mark.parametrize(
    ("path", "kind", "window"),
    [
        ("live/hk/2021/09/24/143046.flv", ContainerKind.FLV, "2021/09/24/143046"),
        ("hk/1999/12/31/235959.flv", ContainerKind.FLV, "1999/12/31/235959"),
        ("live/hw/2021-09-27/18-07-25.mp4", ContainerKind.MP4, "2021-09-27/18-07-25"),
        ("hw/2020-02-29/00-00-00.mp4", ContainerKind.MP4, "2020-02-29/00-00-00"),
    ],
)
def test_formatting_reproduces_the_name_window(path, kind, window):
    value = derive_timestamp(path, kind, CST)
    assert value is not None
    assert format_timestamp(value, kind) == window
    # Matches the fixed window the naming convention reserves.
    width = 21 if kind is ContainerKind.FLV else 23
    assert path[len(path) - width : len(path) - 4] == window


@pytest.mark.parametrize(
    ("path", "kind"),
    [
        ("short.flv", ContainerKind.FLV),
        ("", ContainerKind.FLV),
        ("live/hk/2021/13/24/143046.flv", ContainerKind.FLV),
        ("live/hk/2021/02/30/143046.flv", ContainerKind.FLV),
        ("live/hk/2021/09/24/146046.flv", ContainerKind.FLV),
        ("live/hk/2021/09/24/143046.flv", ContainerKind.MP4),
        ("live/hw/2021-09-27/18:07:25.mp4", ContainerKind.MP4),
    ],
)
def test_unparseable_paths_return_none(path, kind):
    assert derive_timestamp(path, kind, CST) is None


def test_unparseable_maps_to_epoch():
    value = epoch_or_timestamp(derive_timestamp("bogus.flv", ContainerKind.FLV))
    assert value == EPOCH
    assert value.timestamp() == 0


def test_kind_for_path():
    assert kind_for_path("a/b/143046.flv") is ContainerKind.FLV
    assert kind_for_path("a/b/18-07-25.Mp4") is ContainerKind.MP4
    assert kind_for_path("a/b/notes.txt") is None
    assert kind_for_path("a/b.flv/readme") is None
    assert kind_for_path("noext") is None
