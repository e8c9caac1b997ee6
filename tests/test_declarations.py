import asyncio

import pytest

from sceneify.declarations import (
    FilterConfig,
    InputType,
    SceneItemDeclaration,
    check_consistent_kinds,
    declare_input,
    declare_scene,
    iter_scenes,
    ordered_filters,
)
from sceneify.errors import DeclarationError
from sceneify.kinds import BROWSER_SOURCE, CHROMA_KEY, COLOR_CORRECTION, filter_type, input_type


def test_declare_scene_wraps_bare_sources() -> None:
    chat = BROWSER_SOURCE.declare("Chat", settings={"url": "https://x"})
    scene = declare_scene("Main", items={"chat": chat})

    item = scene.items["chat"]
    assert isinstance(item, SceneItemDeclaration)
    assert item.source is chat
    assert item.source_name == "Chat"
    assert item.transform is None and item.enabled is None
    assert scene.kind == "scene"


def test_declare_input_accepts_kind_strings() -> None:
    declaration = declare_input("ffmpeg_source", "Clip", settings={"looping": True})

    assert declaration.kind == "ffmpeg_source"
    assert declaration.settings == {"looping": True}
    assert declaration.filters == {}


def test_declarations_compare_by_value() -> None:
    assert declare_input(BROWSER_SOURCE, "Chat", settings={"url": "a"}) == declare_input(
        "browser_source", "Chat", settings={"url": "a"}
    )
    assert declare_input(BROWSER_SOURCE, "Chat", settings={"url": "a"}) != declare_input(
        BROWSER_SOURCE, "Chat", settings={"url": "b"}
    )


def test_names_are_required() -> None:
    with pytest.raises(DeclarationError):
        declare_input(BROWSER_SOURCE, "")
    with pytest.raises(DeclarationError):
        declare_scene("")


def test_duplicate_filter_names_are_rejected() -> None:
    with pytest.raises(DeclarationError, match="share the name 'Key'"):
        declare_input(
            BROWSER_SOURCE,
            "Cam",
            filters={"a": CHROMA_KEY.config("Key"), "b": COLOR_CORRECTION.config("Key")},
        )


def test_ordered_filters_puts_indexed_first() -> None:
    filters = {
        "late": FilterConfig("color_filter_v2", "Late"),
        "second": FilterConfig("crop_filter", "Second", index=1),
        "first": FilterConfig("gain_filter", "First", index=0),
        "later": FilterConfig("sharpness_filter_v2", "Later"),
    }

    assert [key for key, _ in ordered_filters(filters)] == ["first", "second", "late", "later"]


def test_iter_scenes_yields_children_first() -> None:
    leaf = declare_scene("Leaf")
    middle = declare_scene("Middle", items={"leaf": leaf})
    root = declare_scene("Root", items={"middle": middle, "leaf": leaf})

    assert [scene.name for scene in iter_scenes(root)] == ["Leaf", "Middle", "Root"]


def test_check_consistent_kinds() -> None:
    first = declare_scene("A", items={"x": declare_input(BROWSER_SOURCE, "X")})
    second = declare_scene("B", items={"x": declare_input("image_source", "X")})

    check_consistent_kinds([first])
    with pytest.raises(DeclarationError, match="'X'"):
        check_consistent_kinds([first, second])


def test_scene_and_input_cannot_share_a_name() -> None:
    clash = declare_scene("Main", items={"main": declare_input(BROWSER_SOURCE, "Main")})

    with pytest.raises(DeclarationError):
        check_consistent_kinds([clash])


def test_kind_catalogue_lookup() -> None:
    assert input_type("browser_source") is BROWSER_SOURCE
    assert input_type("vlc_source") == InputType("vlc_source")
    assert filter_type("chroma_key_filter_v2") is CHROMA_KEY


def test_get_default_settings(obs) -> None:
    defaults = asyncio.run(BROWSER_SOURCE.get_default_settings(obs))

    assert defaults["kind"] == "browser_source"
    assert obs.calls_of("GetInputDefaultSettings") == [{"inputKind": "browser_source"}]
