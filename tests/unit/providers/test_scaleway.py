from burrow.providers.scaleway import labels_to_tags, tags_to_labels, zone_to_region


def test_zone_to_region():
    assert zone_to_region("fr-par-1") == "fr-par"
    assert zone_to_region("nl-ams-3") == "nl-ams"


def test_labels_round_trip_through_tags():
    labels = {"burrow": "sandbox", "slug": "fix-login"}

    assert labels_to_tags(labels) == ["burrow=sandbox", "slug=fix-login"]
    assert tags_to_labels(labels_to_tags(labels)) == labels


def test_bare_tag_becomes_true_label():
    assert tags_to_labels(["managed", "a=b=c"]) == {"managed": "true", "a": "b=c"}
    assert labels_to_tags(None) == []
