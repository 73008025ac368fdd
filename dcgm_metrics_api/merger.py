"""Merge per-series observations into one status record per GPU."""

import logging
from typing import Dict, Iterable, List

from .errors import EmptyInputError, NoValidIdentityError
from .models import GpuStatus, MetricName, Observation, convert_utc_to_jst

logger = logging.getLogger(__name__)


def sort_key(status: GpuStatus):
    """Order by hostname, then device index, both compared as plain strings."""
    return (status.hostname, status.device_id)


def merge_gpu_metrics(observations: Iterable[Observation]) -> List[GpuStatus]:
    """Fold a flat list of observations into GpuStatus records.

    Observations are applied in input order. Those without a UUID label are
    skipped. Descriptive labels are seeded when a GPU is first seen and
    overwritten by later observations that carry them, and the timestamp is
    always the last one applied for that GPU.

    Args:
        observations: Decoded samples from any mix of recognized series

    Returns:
        One GpuStatus per distinct UUID, sorted by (hostname, device index)

    Raises:
        EmptyInputError: If no observations are given
        UnknownMetricError: If any observation names an unrecognized series
        NoValidIdentityError: If no observation carries a UUID
    """
    observations = list(observations)
    if not observations:
        raise EmptyInputError("no metrics provided")

    gpus: Dict[str, GpuStatus] = {}
    skipped = 0

    for observation in observations:
        uuid = observation.uuid
        if not uuid:
            skipped += 1
            continue

        status = gpus.get(uuid)
        if status is None:
            status = GpuStatus(
                uuid=uuid,
                hostname=observation.hostname,
                device_id=observation.device_id,
                model_name=observation.model_name
            )
            gpus[uuid] = status
        else:
            status.hostname = observation.hostname or status.hostname
            status.device_id = observation.device_id or status.device_id
            status.model_name = observation.model_name or status.model_name

        status.timestamp = convert_utc_to_jst(observation.timestamp)

        metric = MetricName.parse(observation.metric_name)
        status.update_metric(metric, observation.value)

    if skipped:
        logger.debug(f"Skipped {skipped} observations without a UUID label")

    if not gpus:
        raise NoValidIdentityError("no valid GPU metrics found")

    return sorted(gpus.values(), key=sort_key)
