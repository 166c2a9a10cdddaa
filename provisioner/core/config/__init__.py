"""Configuration loading — provision.yml and dependency lists."""
