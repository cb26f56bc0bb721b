"""个人成对排名引擎"""
