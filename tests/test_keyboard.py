import threading

import pytest

from chip8io import Key, KeyInput


def test_press_lives_one_frame():
    keys = KeyInput()
    assert not keys.is_pressed(Key.K5)
    keys.register_press(Key.K5)
    assert keys.is_pressed(Key.K5)
    assert keys.is_pressed(5)
    keys.tick()
    assert not keys.is_pressed(Key.K5)


def test_longer_duration():
    keys = KeyInput(duration=3)
    keys.register_press(0xA)
    keys.tick()
    keys.tick()
    assert keys.is_pressed(Key.KA)
    keys.tick()
    assert not keys.is_pressed(Key.KA)


def test_refresh_resets_counter():
    keys = KeyInput(duration=2)
    keys.register_press(Key.K1)
    keys.tick()
    keys.register_press(Key.K1)
    keys.tick()
    assert keys.is_pressed(Key.K1)


def test_pressed_button_order():
    keys = KeyInput()
    assert keys.pressed_button() is None
    keys.register_press(Key.KC)
    keys.register_press(Key.K2)
    assert keys.pressed_button() is Key.KC


def test_unknown_key_rejected():
    keys = KeyInput()
    with pytest.raises(ValueError):
        keys.register_press(0x11)


def test_subscriber_gets_exactly_one_press():
    keys = KeyInput()
    got = []
    keys.wait_for_press(got.append)
    keys.register_press(Key.K9)
    keys.register_press(Key.K3)
    assert got == [Key.K9]


def test_subscriber_may_use_keyboard():
    keys = KeyInput()
    seen = []
    keys.wait_for_press(lambda key: seen.append(keys.is_pressed(key)))
    keys.register_press(Key.EXIT)
    assert seen == [True]


def test_concurrent_presses_and_ticks():
    keys = KeyInput(duration=1000)

    def press(key):
        for _ in range(2000):
            keys.register_press(key)

    threads = [threading.Thread(target=press, args=(k,)) for k in (Key.K1, Key.K2)]
    for t in threads:
        t.start()
    for _ in range(500):
        keys.tick()
        keys.pressed_button()
    for t in threads:
        t.join()
    assert keys.is_pressed(Key.K1) and keys.is_pressed(Key.K2)
