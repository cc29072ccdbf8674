import pytest
from pydantic import ValidationError

from jxlbatch.config.loader import load_config
from jxlbatch.config.models import AppConfig, ConversionPolicy, GeneralConfig, normalize_extension


def test_policy_defaults():
    policy = ConversionPolicy.from_options({})
    assert policy.overwrite is False
    assert policy.extension == ".jxl"
    assert policy.timeout_seconds == 0
    assert policy.custom_args == []
    assert policy.directory_input is None


def test_policy_boolean_keys_require_literal_one():
    policy = ConversionPolicy.from_options({
        "overwrite": "1",
        "silent": "true",
        "globalStopOnError": "1",
        "globalCopyOnError": "0",
        "useMultithread": "1",
        "keepDateTime": "1",
        "processNonAscii": "1",
        "-j": "1",
    })
    assert policy.overwrite is True
    assert policy.silent is False
    assert policy.stop_on_error is True
    assert policy.copy_on_error is False
    assert policy.multithreaded is True
    assert policy.keep_date_time is True
    assert policy.process_non_ascii is True
    assert policy.jpeg_transcode is True


def test_policy_custom_flags_and_disable_output():
    policy = ConversionPolicy.from_options({"customFlags": "  --disable_output   --num_reps=3 "})
    assert policy.custom_args == ["--disable_output", "--num_reps=3"]
    assert policy.disable_output is True


def test_policy_suffix_and_format():
    policy = ConversionPolicy.from_options({"outSuffix": "_%rnd%", "outFormat": "jpg"})
    assert policy.suffix_template == "_%rnd%"
    assert policy.extension == ".jpg"


def test_policy_rejects_bad_timeout():
    with pytest.raises(ValidationError):
        ConversionPolicy.from_options({"globalTimeout": "soon"})
    with pytest.raises(ValidationError):
        ConversionPolicy.from_options({"globalTimeout": "-5"})


def test_normalize_extension():
    assert normalize_extension("jxl") == ".jxl"
    assert normalize_extension("..png") == ".png"
    assert normalize_extension("") == ".jxl"
    assert normalize_extension(None) == ".jxl"


def test_general_config_validation():
    with pytest.raises(ValidationError):
        GeneralConfig(threads=0)
    config = GeneralConfig(extensions=["PNG", ".jpg", " "])
    assert config.extensions == [".png", ".jpg"]


def test_app_config_stringifies_options():
    config = AppConfig(options={"-d": 1.0, "-e": 7, "--lossless_jpeg": None})
    assert config.options == {"-d": "1.0", "-e": "7", "--lossless_jpeg": ""}


def test_app_config_rejects_non_mapping_options():
    with pytest.raises(ValidationError):
        AppConfig(options="-d 1.0")


def test_load_config_from_yaml(config_yaml_path):
    config = load_config(config_yaml_path)
    assert config.general.threads == 2
    assert config.general.recursive is True
    assert config.general.extensions == [".png", ".jpg"]
    assert config.binary == "cjxl"
    assert config.options["-d"] == "1.0"
    assert config.options["overwrite"] == "1"
    assert config.options["outSuffix"] == "_%hash%"


def test_load_config_accepts_option_list(tmp_path):
    conf = tmp_path / "list.yaml"
    conf.write_text("options:\n  - -d=2.0\n  - --lossless_jpeg\n")
    config = load_config(conf)
    assert config.options == {"-d": "2.0", "--lossless_jpeg": ""}


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_load_empty_config_uses_defaults(tmp_path):
    conf = tmp_path / "empty.yaml"
    conf.write_text("")
    config = load_config(conf)
    assert config.general.threads == 1
    assert config.options == {}
