"""Tag set applied to every managed resource, and the discovery check built on it."""
from typing import Dict, Iterable, Mapping, Union

from cloudcraft.domain.server.descriptor import ResourceDescriptor

MARKER_TAG = "cloudcraft"
MARKER_VALUE = "true"
NAME_TAG = "Name"
EDITION_TAG = "edition"


def build_tag_set(descriptor: ResourceDescriptor, include_name: bool = True) -> Dict[str, str]:
    tags = {
        MARKER_TAG: MARKER_VALUE,
        EDITION_TAG: descriptor.edition.value,
    }
    if include_name:
        tags[NAME_TAG] = descriptor.name
    return tags


def is_managed(tags: Mapping[str, str]) -> bool:
    return tags.get(MARKER_TAG) == MARKER_VALUE


def flatten_tags(tags: Mapping[str, str]) -> str:
    return ",".join(f"{key}={value}" for key, value in tags.items())


def tags_from_aws(tag_list: Union[Iterable[Dict[str, str]], None]) -> Dict[str, str]:
    """Turn an EC2 ``[{'Key': .., 'Value': ..}]`` list into a plain dict."""
    return {tag["Key"]: tag.get("Value", "") for tag in tag_list or []}


def tags_to_aws(tags: Mapping[str, str]) -> list:
    return [{"Key": key, "Value": value} for key, value in tags.items()]
