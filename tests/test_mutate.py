import json

import pytest

from ocisign.oci import mutate
from ocisign.oci.image import Image


@pytest.fixture
def image(registry, client) -> Image:
    registry.add_image("app", tag="v1", labels={"keep": "me"}, annotations={"org": "x"})
    return Image.pull(name="app", reference="v1", client=client)


def test_empty_mapping_is_noop(image):
    assert mutate.annotations(image, {}) is image
    assert mutate.config_labels(image, {}) is image


def test_unchanged_values_are_noop(image):
    assert mutate.annotations(image, {"org": "x"}).digest == image.digest
    assert mutate.config_labels(image, {"keep": "me"}).digest == image.digest


def test_config_labels_merge(image):
    first = mutate.config_labels(image, {"a": "1"})
    second = mutate.config_labels(first, {"a": "2", "b": "3"})
    assert second.config_file().labels == {"keep": "me", "a": "2", "b": "3"}
    assert len({image.digest, first.digest, second.digest}) == 3
    assert second.manifest.config.size == len(second.config_data)


def test_config_labels_keep_other_fields(image):
    labelled = mutate.config_labels(image, {"test": "me"})
    before = json.loads(image.raw_config)
    after = json.loads(labelled.raw_config)
    assert after["config"].pop("Labels") == {"keep": "me", "test": "me"}
    before["config"].pop("Labels")
    assert after == before
    assert labelled.manifest.layers == image.manifest.layers


def test_config_labels_without_existing_labels(registry, client):
    registry.add_image("plain", tag="v1")
    image = Image.pull(name="plain", reference="v1", client=client)
    assert image.config_file().labels == {}
    labelled = mutate.config_labels(image, {"test": "me"})
    assert labelled.config_file().labels == {"test": "me"}
    assert json.loads(labelled.raw_config)["config"]["Entrypoint"] is None


def test_annotations_merge(image):
    first = mutate.annotations(image, {"a": "1"})
    second = mutate.annotations(first, {"a": "2", "b": "3"})
    assert second.manifest.annotations == {"org": "x", "a": "2", "b": "3"}
    assert second.digest != image.digest
    assert second.manifest.config == image.manifest.config


def test_mutation_leaves_original_untouched(image, registry):
    original = registry.manifest("app", "v1")
    mutate.annotations(mutate.config_labels(image, {"a": "1"}), {"a": "1"})
    assert image.descriptor.data == original
    assert image.manifest.annotations == {"org": "x"}
    assert image.config_file().labels == {"keep": "me"}


def test_write_mutated_image(image, registry, client):
    mutated = mutate.annotations(mutate.config_labels(image, {"test": "me"}), {"test": "me"})
    mutated.write(name="app", reference="v2", client=client)
    manifest = registry.manifest_json("app", "v2")
    assert manifest["annotations"] == {"org": "x", "test": "me"}
    config = json.loads(registry.blob("app", manifest["config"]["digest"]))
    assert config["config"]["Labels"] == {"keep": "me", "test": "me"}
