"""agesmith unit and functional tests"""
