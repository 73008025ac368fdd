"""Unit tests for observation and GPU status models."""

import pytest
from datetime import datetime, timedelta, timezone

from dcgm_metrics_api.errors import DecodeError, UnknownMetricError
from dcgm_metrics_api.models import (
    GpuStatus,
    JST,
    MetricName,
    Observation,
    convert_utc_to_jst,
    create_observations_from_json,
    format_timestamp,
)


class TestObservation:
    """Test cases for Observation decoding."""

    @pytest.fixture
    def sample_row(self):
        """Sample result row from an instant query."""
        return {
            "metric": {
                "__name__": "DCGM_FI_DEV_GPU_TEMP",
                "Hostname": "test-host",
                "gpu": "0",
                "UUID": "test-uuid",
                "modelName": "Test GPU"
            },
            "value": [1743982065.253, "14"]
        }

    def test_from_json(self, sample_row):
        """Test decoding a well-formed row."""
        observation = Observation.from_json(sample_row, "DCGM_FI_DEV_GPU_TEMP")

        assert observation.metric_name == "DCGM_FI_DEV_GPU_TEMP"
        assert observation.uuid == "test-uuid"
        assert observation.hostname == "test-host"
        assert observation.device_id == "0"
        assert observation.model_name == "Test GPU"
        assert observation.value == 14.0

    def test_timestamp_rounds_fraction_to_nanoseconds(self, sample_row):
        """Test the float instant is split into seconds and rounded nanoseconds."""
        observation = Observation.from_json(sample_row)

        seconds, nanos = divmod(observation.timestamp_ns, 1_000_000_000)
        assert seconds == 1743982065
        assert abs(nanos - 253_000_000) < 1000
        assert observation.timestamp == datetime(2025, 4, 6, 23, 27, 45, 253000, tzinfo=timezone.utc)

    def test_integer_instant_is_accepted(self, sample_row):
        """Test whole-second instants decode without a fraction."""
        sample_row["value"] = [1743982065, "14"]
        observation = Observation.from_json(sample_row)
        assert observation.timestamp_ns == 1743982065 * 1_000_000_000

    def test_missing_labels_default_to_empty(self):
        """Test absent labels read as empty strings."""
        observation = Observation.from_json({"metric": {}, "value": [1.5, "1"]})
        assert observation.uuid == ""
        assert observation.metric_name == ""

    def test_non_numeric_value_names_metric(self, sample_row):
        """Test a non-numeric value is a decode error naming the series."""
        sample_row["value"] = [1743982065.253, "invalid"]

        with pytest.raises(DecodeError, match="DCGM_FI_DEV_GPU_TEMP"):
            Observation.from_json(sample_row, "DCGM_FI_DEV_GPU_TEMP")

    def test_value_must_be_string(self, sample_row):
        """Test a bare number in the value slot is rejected."""
        sample_row["value"] = [1743982065.253, 14]

        with pytest.raises(DecodeError, match="invalid value format"):
            Observation.from_json(sample_row)

    @pytest.mark.parametrize("sample", [None, [], [1743982065.253], "14", ["ts", "14"], [True, "14"]])
    def test_malformed_sample(self, sample_row, sample):
        """Test malformed [timestamp, value] pairs are rejected."""
        sample_row["value"] = sample

        with pytest.raises(DecodeError):
            Observation.from_json(sample_row)

    def test_non_string_label_is_rejected(self, sample_row):
        """Test labels must be strings."""
        sample_row["metric"]["gpu"] = 0

        with pytest.raises(DecodeError):
            Observation.from_json(sample_row)

    def test_labels_are_read_only(self, sample_row):
        """Test decoded observations cannot be mutated."""
        observation = Observation.from_json(sample_row)

        with pytest.raises(TypeError):
            observation.labels["UUID"] = "other"

    def test_special_float_values_parse(self, sample_row):
        """Test Prometheus special values parse as floats."""
        sample_row["value"] = [1743982065.253, "+Inf"]
        assert Observation.from_json(sample_row).value == float("inf")

    @pytest.mark.parametrize("instant", [
        float("inf"),
        float("-inf"),
        float("nan"),
        1e300,
        1e15,
        10 ** 400,
        253402300700,
    ])
    def test_unrepresentable_timestamp(self, sample_row, instant):
        """Test instants that cannot become a JST datetime are decode errors."""
        sample_row["value"] = [instant, "14"]

        with pytest.raises(DecodeError, match="invalid timestamp for metric DCGM_FI_DEV_GPU_TEMP"):
            Observation.from_json(sample_row, "DCGM_FI_DEV_GPU_TEMP")

    def test_create_observations_from_json(self, sample_row):
        """Test decoding the data section of an envelope."""
        data = {"resultType": "vector", "result": [sample_row, sample_row]}
        assert len(create_observations_from_json(data, "DCGM_FI_DEV_GPU_TEMP")) == 2

    def test_create_observations_from_json_without_result(self):
        """Test a data section without rows yields no observations."""
        assert create_observations_from_json({"resultType": "vector"}) == []

    def test_create_observations_from_json_without_data(self):
        """Test an absent data section yields no observations."""
        assert create_observations_from_json(None, "DCGM_FI_DEV_GPU_TEMP") == []

    def test_create_observations_from_json_rejects_bad_data(self):
        """Test a non-object data section is a decode error."""
        with pytest.raises(DecodeError, match="data must be an object"):
            create_observations_from_json(["vector"], "DCGM_FI_DEV_GPU_TEMP")

    def test_create_observations_from_json_rejects_bad_result(self):
        """Test a non-list result is a decode error."""
        with pytest.raises(DecodeError):
            create_observations_from_json({"result": {"a": 1}}, "DCGM_FI_DEV_GPU_TEMP")


class TestMetricName:
    """Test cases for the recognized series whitelist."""

    @pytest.mark.parametrize("name,expected", [
        ("DCGM_FI_DEV_GPU_TEMP", MetricName.GPU_TEMP),
        ("DCGM_FI_DEV_FB_FREE", MetricName.MEMORY_FREE),
        ("DCGM_FI_DEV_FB_USED", MetricName.MEMORY_USED),
        ("DCGM_FI_DEV_GPU_UTIL", MetricName.GPU_UTIL),
        ("DCGM_FI_DEV_MEM_COPY_UTIL", MetricName.MEMORY_COPY_UTIL),
    ])
    def test_parse_recognized(self, name, expected):
        assert MetricName.parse(name) is expected

    def test_exactly_five_series(self):
        assert len(MetricName) == 5

    @pytest.mark.parametrize("name", ["DCGM_FI_DEV_POWER_USAGE", "dcgm_fi_dev_gpu_temp", "", None])
    def test_parse_rejects_everything_else(self, name):
        with pytest.raises(UnknownMetricError) as exc_info:
            MetricName.parse(name)
        assert exc_info.value.metric_name == name


class TestTimestampConversion:
    """Test cases for JST conversion and formatting."""

    def test_round_trip_through_jst(self):
        """Test converting to JST and back preserves the absolute instant."""
        observation = Observation(labels={}, timestamp_ns=Observation.instant_to_nanoseconds(1743982065.253), value=0.0)
        utc_time = observation.timestamp

        jst_time = convert_utc_to_jst(utc_time)

        assert jst_time.utcoffset() == timedelta(hours=9)
        assert jst_time == utc_time
        assert jst_time.astimezone(timezone.utc) == utc_time
        assert jst_time.replace(tzinfo=None) - timedelta(hours=9) == utc_time.replace(tzinfo=None)

    def test_naive_datetime_is_treated_as_utc(self):
        jst_time = convert_utc_to_jst(datetime(2025, 1, 1, 0, 0, 0))
        assert jst_time.hour == 9
        assert jst_time.tzinfo is JST

    def test_format_timestamp_trims_fraction(self):
        value = datetime(2025, 4, 7, 8, 27, 45, 253000, tzinfo=JST)
        assert format_timestamp(value) == "2025-04-07T08:27:45.253+09:00"

    def test_format_timestamp_whole_seconds(self):
        value = datetime(2025, 4, 7, 8, 27, 45, tzinfo=JST)
        assert format_timestamp(value) == "2025-04-07T08:27:45+09:00"

    def test_format_timestamp_utc_and_none(self):
        assert format_timestamp(datetime(2025, 4, 6, 23, 27, 45, tzinfo=timezone.utc)) == "2025-04-06T23:27:45Z"
        assert format_timestamp(None) is None


class TestGpuStatus:
    """Test cases for GpuStatus updates and serialization."""

    def test_uuid_required(self):
        with pytest.raises(ValueError):
            GpuStatus(uuid="")

    @pytest.mark.parametrize("metric,field", [
        (MetricName.GPU_TEMP, "gpu_temp"),
        (MetricName.MEMORY_FREE, "memory_free"),
        (MetricName.MEMORY_USED, "memory_used"),
        (MetricName.GPU_UTIL, "gpu_utilization"),
        (MetricName.MEMORY_COPY_UTIL, "gpu_memory_utilization"),
    ])
    def test_update_sets_one_field(self, metric, field):
        status = GpuStatus(uuid="test-uuid")
        status.update_metric(metric, 42.0)

        assert getattr(status, field) == 42.0
        others = {"gpu_temp", "memory_free", "memory_used", "gpu_utilization", "gpu_memory_utilization"} - {field}
        for other in others:
            assert getattr(status, other) == 0.0

    def test_update_rejects_unrecognized_metric(self):
        status = GpuStatus(uuid="test-uuid")

        with pytest.raises(UnknownMetricError, match="DCGM_FI_DEV_POWER_USAGE"):
            status.update_metric("DCGM_FI_DEV_POWER_USAGE", 1.0)
        assert status.gpu_temp == 0.0

    def test_total_memory_needs_both_values(self):
        status = GpuStatus(uuid="test-uuid")

        status.update_metric(MetricName.MEMORY_FREE, 1024.0)
        assert status.memory_total == 0.0

        status.update_metric(MetricName.MEMORY_USED, 3072.0)
        assert status.memory_total == 4096.0

    def test_to_dict_field_names(self):
        status = GpuStatus(
            uuid="test-uuid",
            hostname="test-host",
            device_id="0",
            model_name="Test GPU",
            timestamp=datetime(2025, 4, 7, 8, 27, 45, 253000, tzinfo=JST),
            gpu_temp=14.0
        )

        assert status.to_dict() == {
            "Hostname": "test-host",
            "gpu": "0",
            "uuid": "test-uuid",
            "timestamp": "2025-04-07T08:27:45.253+09:00",
            "modelName": "Test GPU",
            "memory_free": 0.0,
            "memory_used": 0.0,
            "memory_total": 0.0,
            "gpu_utilization": 0.0,
            "gpu_memory_utilization": 0.0,
            "gpu_temp": 14.0,
        }
