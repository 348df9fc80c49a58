import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from layerflow.layers import (default_registry, input_shape_from_params, int_param, parse_cropping, parse_pair,
                              parse_shape, shape_literal)

registry = default_registry()


def shape_of(layer_type, input_shapes, **params):
    spec = registry[layer_type]
    check = spec.validate_inputs(input_shapes, params)
    assert check.is_valid, check.error_message
    return spec.compute_shape(input_shapes, params)


def test_parse_shape():
    assert parse_shape("(28, 28, 1)") == [28, 28, 1]
    assert parse_shape("(784,)") == [784]
    assert parse_shape([10, 3]) == [10, 3]
    assert parse_shape("abc") is None
    assert parse_shape("") is None


def test_parse_pair():
    assert parse_pair("(3,3)") == (3, 3)
    assert parse_pair("5") == (5, 5)
    assert parse_pair(2) == (2, 2)
    assert parse_pair([2, 1]) == (2, 1)
    assert parse_pair("(1,2,3)") is None
    assert parse_pair("x") is None


def test_shape_literal():
    assert shape_literal([784]) == "(784,)"
    assert shape_literal([28, 28, 1]) == "(28, 28, 1)"


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        registry["Dense"] = registry["Flatten"]
    assert registry.get("NoSuchLayer") is None
    for name in ("Input", "Output", "Dense", "Conv2D", "Merge", "LSTM", "Embedding", "Flatten"):
        assert name in registry


def test_registry_flags():
    assert registry.is_input("Input")
    assert not registry.is_input("Dense")
    assert registry.is_merge("Merge")
    assert registry["Dense"].supports_multiplier
    assert not registry["Flatten"].supports_multiplier
    assert registry.repeat_count("Dense", {"multiplier": 3}) == 3
    assert registry.repeat_count("Flatten", {"multiplier": 3}) == 1
    assert registry.repeat_count("Dense", {}) == 1


def test_int_param_rejects_garbage():
    assert int_param({"units": "64"}, "units", 128) == 64
    assert int_param({"units": ""}, "units", 128) == 128
    with pytest.raises(ValueError):
        int_param({"units": "many"}, "units", 128)


def test_input_shapes():
    assert input_shape_from_params({"inputType": "image_color", "height": 32, "width": 32}).shape == [32, 32, 3]
    assert input_shape_from_params({"inputType": "flat_data", "flatSize": 100}).shape == [100]
    assert input_shape_from_params({"inputType": "sequence", "seqLength": 50, "features": 8}).shape == [50, 8]
    assert input_shape_from_params({"shape": "(784,)", "inputType": "image_color"}).shape == [784]
    assert input_shape_from_params({}).shape == [28, 28, 1]
    bad = input_shape_from_params({"inputType": "custom", "customShape": "nope"})
    assert bad.shape is None
    assert "Invalid custom shape" in bad.error


def test_conv2d_padding_arithmetic():
    same = shape_of("Conv2D", [[28, 28, 1]], filters=16, kernel_size="(3,3)", strides="(2,2)", padding="same")
    assert same.shape == [14, 14, 16]
    valid = shape_of("Conv2D", [[28, 28, 1]], filters=8, kernel_size="(3,3)", padding="valid")
    assert valid.shape == [26, 26, 8]


def test_conv2d_transpose():
    assert shape_of("Conv2DTranspose", [[7, 7, 8]], kernel_size=3, strides=2, padding="valid").shape == [15, 15, 32]
    assert shape_of("Conv2DTranspose", [[7, 7, 8]], strides="(2,2)").shape == [14, 14, 32]


def test_conv2d_rejects_flat_input():
    check = registry["Conv2D"].validate_inputs([[784]], {})
    assert not check.is_valid
    assert "3D" in check.error_message
    assert "[784]" in check.error_message


def test_pooling_strides_default_to_pool_size():
    assert shape_of("MaxPool2D", [[28, 28, 32]]).shape == [14, 14, 32]
    assert shape_of("AveragePooling2D", [[28, 28, 32]], pool_size="(3,3)").shape == [9, 9, 32]
    assert shape_of("MaxPool2D", [[28, 28, 32]], pool_size=2, strides=1).shape == [27, 27, 32]


def test_dense_rank_rules():
    check = registry["Dense"].validate_inputs([[28, 28, 1]], {"units": 128})
    assert not check.is_valid
    assert "3D" in check.error_message
    assert "Flatten" in check.error_message

    two_d = shape_of("Dense", [[10, 32]], units=64)
    assert two_d.shape == [10, 64]
    assert two_d.warning

    assert shape_of("Dense", [[784]], units=64).shape == [64]


def test_flatten():
    assert shape_of("Flatten", [[7, 7, 64]]).shape == [3136]
    already_flat = shape_of("Flatten", [[10]])
    assert already_flat.shape == [10]
    assert "no effect" in already_flat.warning


def test_dropout_rate_bounds():
    assert shape_of("Dropout", [[10]], rate=0.3).shape == [10]
    result = shape_of("Dropout", [[10]], rate=1.5)
    assert result.shape is None
    assert "Dropout rate" in result.error


def test_merge_concat_and_elementwise():
    assert shape_of("Merge", [[4, 8], [4, 2]], mode="concat").shape == [4, 10]
    assert shape_of("Merge", [[4, 8], [4, 8]], mode="add").shape == [4, 8]
    assert shape_of("Merge", [[16], [16], [16]], mode="average").shape == [16]

    merge = registry["Merge"]
    mismatch = merge.validate_inputs([[4, 8], [4, 2]], {"mode": "add"})
    assert not mismatch.is_valid
    assert "[4, 8]" in mismatch.error_message and "[4, 2]" in mismatch.error_message
    assert not merge.validate_inputs([[3], [3], [3]], {"mode": "subtract"}).is_valid
    assert not merge.validate_inputs([[3]], {"mode": "add"}).is_valid
    assert not merge.validate_inputs([[3], [3]], {"mode": "blend"}).is_valid


def test_sequence_layers():
    assert shape_of("Embedding", [[100]], output_dim=64).shape == [100, 64]
    assert shape_of("LSTM", [[100, 64]], units=32, return_sequences="true").shape == [100, 32]
    assert shape_of("GRU", [[100, 64]], units=32).shape == [32]
    assert shape_of("Bidirectional", [[100, 64]], units=32).shape == [64]
    assert shape_of("Bidirectional", [[100, 64]], units=32, merge_mode="sum").shape == [32]
    assert shape_of("Conv1D", [[100, 16]], filters=8, kernel_size=3, padding="valid").shape == [98, 8]


def test_spatial_utilities():
    assert shape_of("GlobalAveragePooling2D", [[7, 7, 64]]).shape == [64]
    assert shape_of("UpSampling2D", [[7, 7, 3]]).shape == [14, 14, 3]
    assert shape_of("ZeroPadding2D", [[28, 28, 1]], padding="(2,1)").shape == [32, 30, 1]
    assert shape_of("Cropping2D", [[28, 28, 3]], cropping="((2,2),(4,4))").shape == [24, 20, 3]
    over_cropped = shape_of("Cropping2D", [[4, 4, 3]], cropping=2)
    assert over_cropped.shape is None


def test_parse_cropping():
    assert parse_cropping("((1,2),(3,4))") == (1, 2, 3, 4)
    assert parse_cropping("(1,2)") == (1, 1, 2, 2)
    assert parse_cropping(None) == (1, 1, 1, 1)


def test_code_fragments():
    conv = registry["Conv2D"].generate_code({"filters": 32, "kernel_size": "(3,3)", "activation": "relu"})
    assert conv == "Conv2D(32, kernel_size=(3,3), strides=(1,1), padding='same', activation='relu')"
    assert registry["Dense"].generate_code({"units": 128}) == "Dense(128)"
    assert registry["Dense"].generate_code({"units": 64, "activation": "relu"}) == "Dense(64, activation='relu')"
    assert registry["Dropout"].generate_code({"rate": 0.5}) == "Dropout(0.5)"
    assert registry["MaxPool2D"].generate_code({}) == "MaxPool2D(pool_size=(2,2), padding='valid')"
    assert registry["Output"].generate_code({"outputType": "binary"}) == "Dense(1, activation='sigmoid')"
    assert registry["Output"].generate_code({"numClasses": 5}) == "Dense(5, activation='softmax')"
    assert registry["Merge"].generate_code({"mode": "concat"}) == "Concatenate(axis=-1)"
    assert registry["Merge"].generate_code({"mode": "add"}) == "Add()"
    assert registry["Activation"].generate_code({"activation_function": "tanh"}) == "Activation('tanh')"
    assert registry["Bidirectional"].generate_code({"units": 16}) == "Bidirectional(LSTM(16))"
    assert registry["Embedding"].generate_code({"mask_zero": True}) == "Embedding(10000, 128, mask_zero=True)"
